from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_password_hash, verify_password
from db import User, AuthProvider
from errors import AuthError
from forms import ProfileForm, validate_form
from identity import find_by_email
from live_query import LiveQueryHub, USERS_TOPIC
from serializers import serialize_user
from storage import LocalObjectStorage, avatar_path


async def update_profile(session: AsyncSession, hub: LiveQueryHub, storage: LocalObjectStorage, user: User,
                         display_name: str, bio: str = "", email: Optional[str] = None,
                         password: Optional[str] = None, current_password: Optional[str] = None,
                         avatar_filename: Optional[str] = None, avatar_data: Optional[bytes] = None) -> User:
    """Apply the settings form to a user.

    Email accounts must confirm their current password to change it. A guest
    who supplies both an email and a password is upgraded to an email
    account, keeping its id and history.
    """
    form = validate_form(
        ProfileForm,
        display_name=display_name,
        bio=bio,
        email=email,
        password=password,
        current_password=current_password,
    )

    linking = user.is_anonymous and form.email and form.password
    if form.password and not user.is_anonymous:
        if not form.current_password:
            raise AuthError("auth/requires-recent-login", title="Update Failed", status_code=400)
        if not verify_password(form.current_password, user.password_hash):
            raise AuthError("auth/wrong-password", title="Update Failed")
    if linking:
        existing = await find_by_email(session, form.email)
        if existing and existing.uid != user.uid:
            raise AuthError("auth/email-already-in-use", title="Update Failed", status_code=409)

    if avatar_data:
        user.avatar_url = storage.save(avatar_path(user.uid, avatar_filename or "avatar"), avatar_data)

    if form.password and (linking or not user.is_anonymous):
        user.password_hash = get_password_hash(form.password)
    if linking:
        user.email = form.email
        user.is_anonymous = False
        user.auth_provider = AuthProvider.password
        print(f"🔗 Guest {user.uid} linked to {form.email}")

    user.display_name = form.display_name
    user.bio = form.bio
    await session.commit()
    await session.refresh(user)
    await hub.publish(USERS_TOPIC, {"type": "updated", "user": serialize_user(user)})
    return user
