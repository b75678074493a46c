from authlib.integrations.flask_client import OAuth

oauth = OAuth()

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"


def init_oauth(app):
    """Initialize Authlib with the Google OpenID Connect provider."""
    oauth.init_app(app)
    oauth.register(
        name="google",
        client_id=(app.config.get("GOOGLE_CLIENT_ID") or "").strip(),
        client_secret=(app.config.get("GOOGLE_CLIENT_SECRET") or "").strip(),
        server_metadata_url=GOOGLE_METADATA_URL,
        client_kwargs={"scope": "openid email profile"},
        authorize_params={"prompt": "consent", "access_type": "offline"},
    )
