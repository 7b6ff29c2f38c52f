from typing import Optional
from fastapi import Depends, Header, HTTPException, Query, status
from sqlmodel import Session, select

from .db import get_session
from .models import User


def resolve_owner(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    token: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
) -> User:
    candidate = x_access_token or token
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    user = session.exec(select(User).where(User.access_token == candidate)).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    return user
