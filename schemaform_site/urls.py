"""Root URL configuration for the schemaform site."""

from django.urls import include, path

urlpatterns = [
    path("api/schemaform/", include("schemaform.urls")),
]
