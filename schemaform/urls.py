from django.urls import path

from schemaform.views import dereference_view, required_view, resolve_view

app_name = "schemaform"

urlpatterns = [
    path("resolve/", resolve_view, name="resolve"),
    path("dereference/", dereference_view, name="dereference"),
    path("required/", required_view, name="required"),
]
