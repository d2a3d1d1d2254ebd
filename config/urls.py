from django.urls import include, path

urlpatterns = [
    path("", include("family_wallet.urls")),
]
