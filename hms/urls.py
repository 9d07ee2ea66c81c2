"""
Root URL configuration.

The API itself lives in :mod:`clinic.routers`; this module adds the
Django admin and the generated OpenAPI documents.
"""
from django.contrib import admin
from django.urls import include, path
from drf_yasg import openapi
from drf_yasg.views import get_schema_view
from rest_framework.permissions import AllowAny

api_info = openapi.Info(
    title="Hospital Management API",
    default_version="v1",
    description="Patients, billing, cash office, lab, treatments, staff and permission management.",
)

schema_view = get_schema_view(api_info, public=True, permission_classes=(AllowAny,))

urlpatterns = [
    path("", include("clinic.routers")),
    path("admin/", admin.site.urls),
    path("swagger.json", schema_view.without_ui(cache_timeout=0), name="schema-json"),
    path("swagger/", schema_view.with_ui("swagger", cache_timeout=0), name="schema-swagger-ui"),
    path("redoc/", schema_view.with_ui("redoc", cache_timeout=0), name="schema-redoc"),
]
