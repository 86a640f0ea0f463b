"""Sign-up and sign-in flows: password, anonymous, and OAuth popup."""
import uuid
from typing import Optional

import httpx
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_password_hash, verify_password, create_access_token
from config import DEFAULT_AVATAR_URL, OAUTH_USERINFO_URLS
from db import User, AuthProvider
from errors import AuthError
from forms import SignUpForm, AnonymousForm, validate_form
from live_query import LiveQueryHub, USERS_TOPIC
from serializers import serialize_user


def new_uid() -> str:
    return uuid.uuid4().hex


def default_avatar_url(uid: str) -> str:
    return DEFAULT_AVATAR_URL.format(uid=uid)


def issue_session(user: User) -> str:
    return create_access_token({"sub": user.uid})


async def find_by_email(session: AsyncSession, email: str) -> Optional[User]:
    res = await session.execute(select(User).where(func.lower(User.email) == email.lower()))
    return res.scalar_one_or_none()


async def _create_user(session: AsyncSession, hub: LiveQueryHub, user: User) -> User:
    session.add(user)
    await session.commit()
    await session.refresh(user)
    await hub.publish(USERS_TOPIC, {"type": "added", "user": serialize_user(user)})
    return user


async def sign_up(session: AsyncSession, hub: LiveQueryHub, email: str, password: str, display_name: str):
    form = validate_form(SignUpForm, email=email, password=password, display_name=display_name)
    if await find_by_email(session, form.email):
        raise AuthError("auth/email-already-in-use", title="Sign Up Failed", status_code=409)

    uid = new_uid()
    user = await _create_user(session, hub, User(
        uid=uid,
        display_name=form.display_name,
        email=form.email,
        avatar_url=default_avatar_url(uid),
        bio="",
        is_anonymous=False,
        password_hash=get_password_hash(form.password),
        auth_provider=AuthProvider.password,
    ))
    print(f"👤 New account: {user.display_name} ({user.uid})")
    return user, issue_session(user)


async def sign_in_with_password(session: AsyncSession, email: str, password: str):
    user = await find_by_email(session, email or "")
    if not user or not verify_password(password or "", user.password_hash):
        raise AuthError("auth/invalid-credential", title="Login Failed")
    return user, issue_session(user)


async def sign_in_anonymously(session: AsyncSession, hub: LiveQueryHub, display_name: str):
    form = validate_form(AnonymousForm, display_name=display_name)
    res = await session.execute(select(User).where(User.display_name == form.display_name))
    if res.scalars().first():
        raise AuthError("auth/display-name-taken", title="Name Taken", status_code=409)

    uid = new_uid()
    user = await _create_user(session, hub, User(
        uid=uid,
        display_name=form.display_name,
        email=None,
        avatar_url=default_avatar_url(uid),
        bio="",
        is_anonymous=True,
        auth_provider=AuthProvider.anonymous,
    ))
    print(f"👤 Guest joined: {user.display_name} ({user.uid})")
    return user, issue_session(user)


async def fetch_oauth_profile(provider: str, access_token: str) -> dict:
    """Ask the provider who owns an access token.

    Returns ``{"subject", "name", "email", "photo_url"}``.
    """
    url = OAUTH_USERINFO_URLS.get(provider)
    if not url:
        raise AuthError("auth/unsupported-provider", status_code=400)
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as e:
        print(f"❌ OAuth profile lookup failed for {provider}: {e}")
        raise AuthError("auth/provider-error") from e

    if provider == "github":
        return {
            "subject": str(data.get("id")),
            "name": data.get("name") or data.get("login"),
            "email": data.get("email"),
            "photo_url": data.get("avatar_url"),
        }
    return {
        "subject": str(data.get("sub")),
        "name": data.get("name"),
        "email": data.get("email"),
        "photo_url": data.get("picture"),
    }


async def sign_in_with_oauth(session: AsyncSession, hub: LiveQueryHub, provider: str, access_token: str):
    provider = (provider or "").lower()
    if provider not in (AuthProvider.google.value, AuthProvider.github.value):
        raise AuthError("auth/unsupported-provider", status_code=400)
    auth_provider = AuthProvider(provider)

    profile = await fetch_oauth_profile(provider, access_token)
    if not profile.get("subject") or profile["subject"] == "None":
        raise AuthError("auth/provider-error")

    res = await session.execute(
        select(User).where(User.auth_provider == auth_provider, User.provider_uid == profile["subject"])
    )
    user = res.scalar_one_or_none()
    if user:
        return user, issue_session(user)

    email = profile.get("email")
    if email and await find_by_email(session, email):
        raise AuthError("auth/account-exists-with-different-credential", title="Account Exists", status_code=409)

    uid = new_uid()
    name = (profile.get("name") or (email.split("@")[0] if email else "") or "User")[:50]
    user = await _create_user(session, hub, User(
        uid=uid,
        display_name=name,
        email=email,
        avatar_url=profile.get("photo_url") or default_avatar_url(uid),
        bio="",
        is_anonymous=False,
        auth_provider=auth_provider,
        provider_uid=profile["subject"],
    ))
    print(f"👤 New {provider} account: {user.display_name} ({user.uid})")
    return user, issue_session(user)
