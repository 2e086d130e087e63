"""
Map linking outcomes and errors to the JSON the signup client expects.

User-facing text comes only from the tables below. Raw store errors are
logged where they happen and never reach a response body.
"""

from typing import Any

from pelada.players.errors import ErrorKind, LinkingError
from pelada.players.outcomes import LinkingResult, Outcome

SUCCESS_MESSAGES: dict[Outcome, str] = {
    Outcome.CLAIMED_VIA_TOKEN: "Perfil vinculado com sucesso! Você já pode acessar seu histórico.",
    Outcome.AUTO_LINK: (
        "Seu cadastro foi vinculado ao perfil existente: {name}. "
        "Você já pode acessar seu histórico!"
    ),
    Outcome.PARTIAL_PENDING: (
        "Cadastro realizado! Encontramos um jogador parecido com você; "
        "o administrador vai revisar a vinculação."
    ),
    Outcome.NO_MATCH: (
        "Cadastro realizado com sucesso! Aguarde aprovação do administrador "
        "para ser escalado em times."
    ),
    Outcome.FALLBACK_CREATED: (
        "Cadastro realizado com sucesso! Aguarde aprovação do administrador "
        "para ser escalado em times."
    ),
    Outcome.ALREADY_LINKED: "Seu cadastro já foi processado.",
}

ERROR_RESPONSES: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.VALIDATION: (400, "Dados incompletos: auth_user_id e email são obrigatórios."),
    ErrorKind.DUPLICATE: (409, "Este cadastro já existe."),
    ErrorKind.LINK_CONFLICT: (409, "Este perfil já foi vinculado a outro usuário."),
    ErrorKind.PERSISTENCE: (500, "Não foi possível concluir o cadastro. Tente novamente."),
    ErrorKind.MATCHER_UNAVAILABLE: (500, "Não foi possível concluir o cadastro. Tente novamente."),
}

INVALID_TOKEN_MESSAGE = "Código inválido ou já utilizado."
NOT_FOUND_MESSAGE = "Registro não encontrado."


class ResponseComposer:
    """Build (body, status_code) pairs for the linking endpoints."""

    def success(self, result: LinkingResult) -> tuple[dict[str, Any], int]:
        body: dict[str, Any] = {
            "ok": True,
            "linked": result.linked,
            "created": result.created,
        }
        if result.player_id is not None:
            body["player_id"] = result.player_id
        if result.score is not None:
            body["match_score"] = result.score
        if result.suggestion is not None:
            body["partial_match"] = {
                "profile_id": result.suggestion.profile_id,
                "name": result.suggestion.name,
                "score": result.suggestion.match_score,
            }
        if result.outcome == Outcome.CLAIMED_VIA_TOKEN:
            body["claimed_via_token"] = True

        body["message"] = SUCCESS_MESSAGES[result.outcome].format(
            name=result.display_name or "Jogador"
        )
        return body, 200

    def failure(self, error: LinkingError) -> tuple[dict[str, Any], int]:
        status, message = ERROR_RESPONSES[error.kind]
        return {"ok": False, "error": message}, status

    def token_claim(self, result: LinkingResult) -> tuple[dict[str, Any], int]:
        """Body for the post-signup token claim, {success, message|error}."""
        if result.outcome == Outcome.CLAIMED_VIA_TOKEN:
            return {"success": True, "message": SUCCESS_MESSAGES[result.outcome]}, 200
        if result.outcome == Outcome.ALREADY_LINKED:
            return {"success": False, "error": SUCCESS_MESSAGES[result.outcome]}, 200
        return {"success": False, "error": INVALID_TOKEN_MESSAGE}, 200
