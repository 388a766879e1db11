"""Row builders shared by the test modules"""

import uuid

from qodari_iam.core.security import generate_token, hash_password, hash_secret, pkce_s256_challenge
from qodari_iam.models import (
    Account,
    ApiClient,
    ApiClientRole,
    Application,
    Permission,
    Role,
    RolePermission,
    User,
    UserRole,
)

PASSWORD = "correct horse battery staple"
CALLBACK = "https://app.acme.io/callback"
VERIFIER = "v" * 20 + generate_token(32)


def make_account(db, slug="acme", status="active"):
    account = Account(name=slug.title(), slug=slug, status=status)
    db.add(account)
    db.commit()
    return account


def make_application(db, account, slug="portal", client_type="public", **overrides):
    values = dict(
        account_id=account.id,
        name=slug.title(),
        slug=slug,
        client_type=client_type,
        client_id=f"{slug}-{uuid.uuid4().hex[:8]}",
        client_secret=generate_token(24),
        client_jwt_secret=generate_token(32),
        callback_urls=[CALLBACK, "https://app.acme.io/other"],
    )
    values.update(overrides)
    application = Application(**values)
    db.add(application)
    db.commit()
    return application


def make_user(db, account, email="jane@acme.io", password=PASSWORD, **overrides):
    user = User(
        account_id=account.id,
        email=email,
        first_name="Jane",
        last_name="Doe",
        password_hash=hash_password(password),
        **overrides,
    )
    db.add(user)
    db.commit()
    return user


def make_api_client(db, account, secret="machine-secret", **overrides):
    api_client = ApiClient(
        account_id=account.id,
        name="Reporting job",
        client_id=f"svc-{uuid.uuid4().hex[:8]}",
        client_secret_hash=hash_secret(secret),
        **overrides,
    )
    db.add(api_client)
    db.commit()
    return api_client


def make_role(db, application, slug, permissions=()):
    role = Role(account_id=application.account_id, application_id=application.id, name=slug.title(), slug=slug)
    db.add(role)
    db.flush()
    for key in permissions:
        resource, action = key.split(":")
        permission = (
            db.query(Permission)
            .filter(
                Permission.application_id == application.id,
                Permission.resource == resource,
                Permission.action == action,
            )
            .first()
        )
        if permission is None:
            permission = Permission(
                account_id=application.account_id,
                application_id=application.id,
                name=key,
                resource=resource,
                action=action,
            )
            db.add(permission)
            db.flush()
        db.add(RolePermission(role_id=role.id, permission_id=permission.id))
    db.commit()
    return role


def grant_user_role(db, user, role):
    db.add(UserRole(user_id=user.id, role_id=role.id))
    db.commit()


def grant_api_client_role(db, api_client, role):
    db.add(ApiClientRole(api_client_id=api_client.id, role_id=role.id))
    db.commit()


def challenge_for(verifier=VERIFIER):
    return pkce_s256_challenge(verifier)
