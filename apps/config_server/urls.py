"""
apps.config_server.urls
~~~~~~~~~~~~~~~~~~~~~~~
URL routing for the config server.  Mounted at / by the root URLconf.

Fixed paths come first so that ``/encrypt/...`` and ``/key/`` are never
read as ``/{application}/{profile}``.  Trailing slashes are optional, as
config clients request ``/{application}/{profile}`` without one.
"""
from django.urls import re_path

from .views import (
    DecryptView,
    EncryptStatusView,
    EncryptView,
    EnvironmentDocumentView,
    EnvironmentView,
    PublicKeyView,
    RefreshView,
)

SEGMENT = r"[^/]+"
DOCUMENT = rf"(?P<name>{SEGMENT})\.(?P<extension>yml|yaml|properties)"

urlpatterns = [
    re_path(r"^encrypt/status/?$", EncryptStatusView.as_view(), name="encrypt-status"),
    re_path(r"^encrypt/?$", EncryptView.as_view(), name="encrypt"),
    re_path(
        rf"^encrypt/(?P<application>{SEGMENT})/(?P<profile>{SEGMENT})/?$",
        EncryptView.as_view(),
        name="encrypt-client",
    ),
    re_path(r"^decrypt/?$", DecryptView.as_view(), name="decrypt"),
    re_path(
        rf"^decrypt/(?P<application>{SEGMENT})/(?P<profile>{SEGMENT})/?$",
        DecryptView.as_view(),
        name="decrypt-client",
    ),
    re_path(r"^key/?$", PublicKeyView.as_view(), name="public-key"),
    re_path(r"^refresh/?$", RefreshView.as_view(), name="refresh"),

    # GET /{application}-{profile}.yml  and  /{label}/{application}-{profile}.yml
    re_path(rf"^{DOCUMENT}$", EnvironmentDocumentView.as_view(), name="environment-document"),
    re_path(
        rf"^(?P<label>{SEGMENT})/{DOCUMENT}$",
        EnvironmentDocumentView.as_view(),
        name="environment-document-labelled",
    ),

    # GET /{application}/{profile}[/{label}]
    re_path(
        rf"^(?P<application>{SEGMENT})/(?P<profile>{SEGMENT})(?:/(?P<label>{SEGMENT}))?/?$",
        EnvironmentView.as_view(),
        name="environment",
    ),
]
