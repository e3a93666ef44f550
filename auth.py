from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from database import get_db
from models import User

# Sign-in and sessions are handled by the upstream identity provider, which
# forwards the authenticated user's id in this header.
USER_ID_HEADER = "X-User-Id"

def get_current_user(
    x_user_id: int = Header(..., alias=USER_ID_HEADER),
    db: Session = Depends(get_db)
) -> User:
    user = db.query(User).filter(User.id == x_user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user"
        )
    return user
