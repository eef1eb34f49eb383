"""
Verificación de JWT con RS256 (claves asimétricas).
Los tokens los emite el servicio de identidad; aquí solo se validan
con la clave pública.
"""

import jwt

from app.config import get_settings

settings = get_settings()

# Único tipo de token que acepta esta API
ACCESS_TOKEN_TYPE = "access"


def decode_token(token: str) -> dict:
    """
    Decodifica y verifica un token JWT.
    Lanza jwt.InvalidTokenError si el token es inválido o expirado.
    """
    return jwt.decode(
        token,
        settings.jwt_public_key,
        algorithms=[settings.JWT_ALGORITHM],
    )
