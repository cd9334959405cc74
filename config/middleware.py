"""
Custom middleware for tenant scoping.
"""


class OrganizationMiddleware:
    """
    Attach the authenticated user's organization to the request.

    Views read ``request.organization`` rather than following the user
    relation themselves; anonymous users and users without an organization
    get ``None``.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.organization = None
        user = getattr(request, "user", None)
        if user is not None and user.is_authenticated:
            request.organization = user.organization
        return self.get_response(request)
