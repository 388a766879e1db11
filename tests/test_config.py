import pytest

from qodari_iam.config import Settings


def _settings(**values):
    return Settings(_env_file=None, **values)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('["https://a.acme.io", "https://b.acme.io"]', ["https://a.acme.io", "https://b.acme.io"]),
        ("https://a.acme.io, https://b.acme.io", ["https://a.acme.io", "https://b.acme.io"]),
        ('"https://a.acme.io"', ["https://a.acme.io"]),
        ("", []),
    ],
)
def test_cors_origins_from_env(monkeypatch, raw, expected):
    monkeypatch.setenv("CORS_ORIGINS", raw)
    assert _settings().CORS_ORIGINS == expected


def test_database_url_from_parts():
    settings = _settings(
        DATABASE_URL="",
        POSTGRES_USER="iam",
        POSTGRES_PASSWORD="p@ss word",
        POSTGRES_HOST="db",
        POSTGRES_PORT=5433,
        POSTGRES_DB="iam",
    )
    assert settings.get_database_url() == "postgresql://iam:p%40ss+word@db:5433/iam"


def test_explicit_database_url_wins():
    assert _settings(DATABASE_URL="sqlite://").get_database_url() == "sqlite://"


def test_production_requires_https_issuer():
    with pytest.raises(ValueError):
        _settings(ENVIRONMENT="production").validate_security_settings()
    with pytest.raises(ValueError):
        _settings(ENVIRONMENT="production", IAM_ISSUER="http://iam.acme.io").validate_security_settings()
    with pytest.raises(ValueError):
        _settings(
            ENVIRONMENT="production",
            IAM_ISSUER="https://iam.acme.io",
            APP_URL="http://app.acme.io",
        ).validate_security_settings()

    _settings(
        ENVIRONMENT="production",
        IAM_ISSUER="https://iam.acme.io",
        APP_URL="https://app.acme.io",
    ).validate_security_settings()


def test_development_skips_security_checks():
    _settings(ENVIRONMENT="development").validate_security_settings()
