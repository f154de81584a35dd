"""
Taxonomie des erreurs du service Mon Quartier.

Les backends (Mongo, mémoire) traduisent les erreurs de leurs pilotes en
``TransportError`` / ``ConflictError`` ; les flux optimistes et les snapshots
n'interceptent que ``QuartierError``.
"""
from typing import Optional


class QuartierError(Exception):
    """Erreur de base, porte un message affichable à l'utilisateur."""

    status_code = 500
    user_message = "Une erreur système est survenue."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class ConfigurationError(QuartierError):
    status_code = 503
    user_message = "Configuration manquante : l'application n'est pas connectée au backend."


class TransportError(QuartierError):
    status_code = 502
    user_message = "Impossible de joindre le serveur. Vérifiez votre connexion."


class AuthorizationError(TransportError):
    # Refus d'une règle d'accès du store : présenté comme une erreur réseau générique
    status_code = 403


class ConflictError(TransportError):
    status_code = 409
    user_message = "Conflit de données."


class InvalidInputError(QuartierError):
    status_code = 422
    user_message = "Données invalides."


class NotFoundError(QuartierError):
    status_code = 404
    user_message = "Élément introuvable."


class AuthenticationError(QuartierError):
    status_code = 401
    user_message = "Email ou mot de passe incorrect."


class PermissionDeniedError(QuartierError):
    # Refus applicatif explicite (auteur, rôle), message conservé
    status_code = 403
    user_message = "Action non autorisée."


# Motifs connus renvoyés par les pilotes / le store, traduits pour l'utilisateur
KNOWN_PATTERNS = [
    ("failed to fetch", "Impossible de joindre le serveur. Vérifiez votre connexion."),
    ("connection refused", "Impossible de joindre le serveur. Vérifiez votre connexion."),
    ("timed out", "Impossible de joindre le serveur. Vérifiez votre connexion."),
    ("invalid login credentials", "Email ou mot de passe incorrect."),
    ("user already registered", "Cet utilisateur existe déjà."),
    ("duplicate key", "Conflit de données (Email/Tél déjà utilisé)."),
    ("unique constraint", "Conflit de données (Email/Tél déjà utilisé)."),
    ("password should be at least 6 characters", "Le mot de passe doit contenir au moins 6 caractères."),
]


def translate_error(exc: BaseException) -> str:
    """Message utilisateur pour une exception quelconque."""
    message = str(exc)
    lowered = message.lower()
    for pattern, translated in KNOWN_PATTERNS:
        if pattern in lowered:
            return translated
    if isinstance(exc, QuartierError):
        return message
    return QuartierError.user_message
