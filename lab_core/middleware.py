# lab_core/middleware.py

from django.utils.deprecation import MiddlewareMixin

from .audit import set_current_user


class CurrentUserMiddleware(MiddlewareMixin):
    """
    Makes request.user available to audit logging outside the view layer.

    - Must tolerate unauthenticated requests
    - Must run after AuthenticationMiddleware
    """

    def process_request(self, request):
        user = getattr(request, "user", None)

        if user is not None and getattr(user, "is_authenticated", False):
            set_current_user(user)
        else:
            set_current_user(None)

        return None

    def process_response(self, request, response):
        set_current_user(None)
        return response
