from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Login request schema"""
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6, max_length=100)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "username": "demo",
                    "password": "changeme123"
                }
            ]
        }
    }


class Token(BaseModel):
    """JWT token response schema"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class User(BaseModel):
    """Authenticated caller"""
    id: str
    username: str
    disabled: bool = False


class CreditBalance(BaseModel):
    """Caller's remaining credit units"""
    user_id: str
    balance: int
