from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, field_validator, model_validator


class UserRegister(BaseModel):
    mode: Literal["CREATE", "JOIN"]
    email: EmailStr
    password: str
    password_confirm: str
    full_name: str
    phone: Optional[str] = None
    birth_date: Optional[str] = None
    # CREATE : quartier choisi ; JOIN : hérité du chef de famille
    community_id: Optional[str] = None
    family_code: Optional[str] = None

    @field_validator('full_name')
    @classmethod
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Le nom complet est requis")
        return v.strip()

    @field_validator('password')
    @classmethod
    def password_length(cls, v):
        if len(v) < 6:
            raise ValueError("Le mot de passe doit contenir au moins 6 caractères")
        return v

    @field_validator('phone')
    @classmethod
    def validate_phone_format(cls, v):
        if v and not v.startswith('+'):
            if not v.replace(' ', '').replace('-', '').isdigit():
                raise ValueError('Format de téléphone invalide')
        return v

    @model_validator(mode='after')
    def check_mode(self):
        if self.password != self.password_confirm:
            raise ValueError('Les mots de passe ne correspondent pas')
        if self.mode == "CREATE" and not self.community_id:
            raise ValueError("Veuillez choisir un quartier")
        if self.mode == "JOIN" and not self.family_code:
            raise ValueError("Code famille requis")
        return self


class FamilyCodeRequest(BaseModel):
    code: str

    @field_validator('code')
    @classmethod
    def normalize(cls, v):
        if not v or not v.strip():
            raise ValueError("Code famille requis")
        return v.strip().upper()


class UserLogin(BaseModel):
    identifier: str  # email ou téléphone
    password: str

    @field_validator('identifier')
    @classmethod
    def identifier_required(cls, v):
        if not v or v.strip() == "":
            raise ValueError("Email ou téléphone est requis")
        return v.strip()


class ForgotPasswordRequest(BaseModel):
    identifier: str

    @field_validator('identifier')
    @classmethod
    def identifier_required(cls, v):
        if not v or v.strip() == "":
            raise ValueError("Email ou téléphone est requis")
        return v.strip()


class VerifyCodeRequest(BaseModel):
    code: str

    @field_validator('code')
    @classmethod
    def code_required(cls, v):
        if not v or v.strip() == "":
            raise ValueError("Code de vérification requis")
        return v.strip()


class ResetPasswordRequest(BaseModel):
    code: str
    new_password: str
    confirm_password: str

    @model_validator(mode='after')
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError('Les mots de passe ne correspondent pas')
        if len(self.new_password) < 6:
            raise ValueError("Le mot de passe doit contenir au moins 6 caractères")
        return self


class UserOut(BaseModel):
    id: int
    email: str
    full_name: str
    phone: Optional[str] = None
    community_id: Optional[str] = None
    family_id: Optional[str] = None
    is_head_of_family: bool = False
    birth_date: Optional[str] = None
    role: str
    status: str
    balance_status: str
    avatar_url: Optional[str] = None

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
