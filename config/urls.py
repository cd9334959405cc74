"""SDA Back Office URL Configuration"""
from django.contrib import admin
from django.urls import path, include

from config.media_serving import serve_signed_file

urlpatterns = [
    path("admin/", admin.site.urls),
    # JSON API
    path("api/", include("accounts.urls")),
    path("api/", include("core.urls")),
    path("api/", include("billing.urls")),
    path("api/", include("claims.urls")),
    # Signed downloads for exports and rendered documents
    path("files/<str:token>/", serve_signed_file, name="signed_file"),
]

# Errors raised outside the API views still answer with the JSON envelope
handler404 = "config.api.not_found"
handler403 = "config.api.permission_denied"

# Customise admin site
admin.site.site_header = "SDA Back Office"
admin.site.site_title = "SDA Admin"
admin.site.index_title = "Administration"
