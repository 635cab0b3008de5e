"""Alternative storage backends for the user, audit and token services."""
