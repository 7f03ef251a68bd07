from functools import wraps

from django.http import JsonResponse


def staff_required(view):
    """Staff-only JSON endpoints answer 403 instead of redirecting to a login page."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        user = getattr(request, "user", None)
        if not (user and user.is_authenticated and user.is_staff):
            return JsonResponse({"success": False, "error": "Staff access required"}, status=403)
        return view(request, *args, **kwargs)
    return wrapper
