# recovery_app/config/constants.py

# Identificadores de usuário (UUID ou identificador externo)
USER_ID_LENGTH_MIN = 1
USER_ID_LENGTH_MAX = 64

# Credencial apresentada na verificação (token hex ou código numérico)
CREDENTIAL_LENGTH_MIN = 4
CREDENTIAL_LENGTH_MAX = 256

# Justificativas e observações administrativas
REASON_LENGTH_MAX = 500
NOTES_LENGTH_MAX = 2000

# Contato usado na recuperação (e-mail ou telefone)
CONTACT_INFO_LENGTH_MAX = 254

# Limite de tentativas ao disputar um slot de requisição pendente
PENDING_SLOT_RETRIES = 3

# Categorias de auditoria
AUDIT_CATEGORY_RECOVERY = 'mfa_recovery'
AUDIT_CATEGORY_OVERRIDE = 'admin_override'
AUDIT_CATEGORY_ACCESS = 'temporary_access'

# Declaração da URL de Obtenção do Token (emitido pelo serviço de autenticação)
OAUTH2_SCHEME_TOKEN_URL = '/admin/auth/token'

# Tentativas de transação otimista (WATCH/MULTI) no rate limiter
RATE_LIMIT_WATCH_RETRIES = 5

# Categoria das ações administrativas de leitura/manutenção
AUDIT_CATEGORY_STAFF = 'staff'

# Contexto da requisição gravado em auditoria (mesmo tamanho das colunas)
IP_ADDRESS_LENGTH_MAX = 64
USER_AGENT_LENGTH_MAX = 255
