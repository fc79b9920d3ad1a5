from django.http import JsonResponse


def error_404_view(request, exception):
    return JsonResponse(
        {"ok": False, "error": {"code": "not_found", "message": "Resource not found"}},
        status=404,
    )
