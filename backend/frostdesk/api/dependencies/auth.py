# backend/frostdesk/api/dependencies/auth.py
"""
Caller identity for booking routes.

Authentication happens upstream; the gateway forwards the authenticated
instructor as the X-Instructor-Id header.
"""

from fastapi import Header, HTTPException, status

INSTRUCTOR_HEADER = "X-Instructor-Id"


def get_current_instructor_id(
    x_instructor_id: str | None = Header(
        None, alias=INSTRUCTOR_HEADER, description="Authenticated instructor id"
    ),
) -> str:
    instructor_id = (x_instructor_id or "").strip()
    if not instructor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "message": f"Missing {INSTRUCTOR_HEADER} header",
                "code": "INSTRUCTOR_REQUIRED",
                "details": {},
            },
        )
    if len(instructor_id) > 64:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": f"{INSTRUCTOR_HEADER} is too long",
                "code": "INVALID_INSTRUCTOR_ID",
                "details": {},
            },
        )
    return instructor_id
