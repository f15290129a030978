# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single aggregate:
#
#   post_service     — listing, filtering, pagination, CRUD + cache for Post
#   comment_service  — append-only comments on a Post
#   user_service     — registration, sign-in and public User serialisation
#
# All service functions accept an AsyncSession as their first argument so
# that the router layer controls the transaction boundary via the
# ``get_db`` dependency.  Failures are raised as ``blog.exceptions``
# errors, which the application maps to ``{"error": ...}`` responses.
