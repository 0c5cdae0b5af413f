from vault.schemas import UserProfile


def profile_for(user):
    """Profile fields of ``user`` as exposed to the session and the envelope."""
    if user is None or not getattr(user, 'is_authenticated', False):
        return UserProfile()
    return UserProfile(
        email=getattr(user, 'email', '') or '',
        name=getattr(user, 'name', '') or None,
        image=getattr(user, 'image', '') or None,
    )


def session_payload(user):
    """The ``user`` object returned by the session endpoint, or None when signed out."""
    if user is None or not getattr(user, 'is_authenticated', False):
        return None
    payload = profile_for(user).model_dump()
    payload['id'] = str(user.pk)
    return payload
