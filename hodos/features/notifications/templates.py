"""Email templates for subscription lifecycle notifications."""

from typing import Dict, Tuple


class _Defaults(dict):
    def __missing__(self, key):
        return ""


PLAN_LABELS = {
    "individual": "Individual",
    "church_simple": "Igreja Simples",
    "church_plus": "Igreja Plus",
    "church_premium": "Igreja Premium",
}

TEMPLATES: Dict[str, Tuple[str, str]] = {
    "payment-pending": (
        "Recebemos sua solicitação de assinatura Hodos",
        "Olá {user_name},\n\n"
        "Recebemos sua solicitação do plano {plan_label} no valor de R$ {amount}.\n"
        "Seu código de confirmação é {confirmation_code}. Informe este código ao "
        "realizar o PIX para agilizar a conferência.\n\n"
        "Assim que o pagamento for confirmado você receberá um novo email.\n",
    ),
    "welcome-individual": (
        "Bem-vindo ao Hodos - Assinatura Individual Aprovada!",
        "Olá {user_name},\n\n"
        "Seu pagamento foi confirmado e o plano {plan_name} está ativo até {expires_at}.\n"
        "Acesse: {app_url}\n",
    ),
    "welcome-church": (
        "Bem-vindo ao Hodos - Assinatura Igreja Aprovada!",
        "Olá {user_name},\n\n"
        "O plano {plan_name} da igreja está ativo até {expires_at}.\n"
        "Página da igreja: {app_url}/igreja/{church_slug}\n"
        "Você já tem acesso ao painel administrativo.\n",
    ),
    "rejection": (
        "Atualização sobre sua assinatura Hodos",
        "Olá {user_name},\n\n"
        "Não foi possível confirmar o pagamento do plano {plan_label} "
        "(código {confirmation_code}).\n"
        "Motivo: {rejection_reason}\n\n"
        "Se já realizou o pagamento, responda este email com o comprovante.\n",
    ),
    "subscription-expiring": (
        "Sua assinatura Hodos vence em breve",
        "Olá {user_name},\n\n"
        "O plano {plan_label} vence em {expires_at}. Renove para manter o acesso: "
        "{app_url}/assinatura/renovar\n",
    ),
    "subscription-expired": (
        "Sua assinatura Hodos venceu",
        "Olá {user_name},\n\n"
        "O plano {plan_label} venceu em {expires_at}. Você tem {grace_days} dias para "
        "renovar antes do cancelamento: {app_url}/assinatura/renovar\n",
    ),
    "subscription-downgraded": (
        "Sua assinatura Hodos foi cancelada",
        "Olá {user_name},\n\n"
        "O plano {plan_label} foi cancelado por falta de renovação. "
        "Sua conta continua ativa no plano gratuito.\n",
    ),
}


def render(template_key: str, variables: Dict[str, object]) -> Tuple[str, str]:
    """Return (subject, text body). Unknown keys raise KeyError."""
    subject, body = TEMPLATES[template_key]
    values = _Defaults(variables or {})
    if "plan_label" not in values and values.get("plan_type"):
        values["plan_label"] = PLAN_LABELS.get(str(values["plan_type"]), str(values["plan_type"]))
    if not values.get("user_name"):
        values["user_name"] = "irmão(ã)"
    return subject.format_map(values), body.format_map(values)
