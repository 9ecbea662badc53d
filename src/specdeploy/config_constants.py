"""
Default names and values for the render-apply-cleanup pipeline.

All modules import from here instead of hardcoding file names, variable
names or executable names.
"""

# ============================================================================
# Files
# ============================================================================

# Optional pipeline configuration (working directory)
CONFIG_FILE = 'specdeploy.toml'

# Template (committed) and rendered spec (gitignored, holds plaintext secrets)
TEMPLATE_FILE = 'spec.yaml.tmpl'
RENDERED_SPEC_FILE = 'spec.yaml'

# Rendered spec is readable by the operator only
RENDERED_SPEC_MODE = 0o600

# ============================================================================
# Secret store (Vault)
# ============================================================================

SECRETS_BACKEND_VAULT_CLI = 'vault-cli'
SECRETS_BACKEND_VAULT_HTTP = 'vault-http'
SECRETS_BACKENDS = (SECRETS_BACKEND_VAULT_CLI, SECRETS_BACKEND_VAULT_HTTP)

VAULT_ADDR_ENV = 'VAULT_ADDR'
VAULT_TOKEN_ENV = 'VAULT_TOKEN'
VAULT_EXECUTABLE = 'vault'

# Application Identity location in the KV store
APP_ID_SECRET_PATH = 'kv/newsletter'
APP_ID_SECRET_FIELD = 'app_id'

# ============================================================================
# Renderer
# ============================================================================

RENDERER_CONSUL_TEMPLATE = 'consul-template'
RENDERER_JINJA2 = 'jinja2'
RENDERER_BACKENDS = (RENDERER_CONSUL_TEMPLATE, RENDERER_JINJA2)

CONSUL_TEMPLATE_EXECUTABLE = 'consul-template'

# ============================================================================
# Platform (DigitalOcean App Platform)
# ============================================================================

PLATFORM_DOCTL = 'doctl'
PLATFORM_API = 'api'
PLATFORM_BACKENDS = (PLATFORM_DOCTL, PLATFORM_API)

DOCTL_EXECUTABLE = 'doctl'
DIGITALOCEAN_API_URL = 'https://api.digitalocean.com'
DIGITALOCEAN_TOKEN_ENV = 'DIGITALOCEAN_ACCESS_TOKEN'

# ============================================================================
# Timeouts (seconds) and exit codes
# ============================================================================

SECRET_LOOKUP_TIMEOUT = 30
RENDER_TIMEOUT = 120
PLATFORM_TIMEOUT = 60

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_PRECONDITION_FAILED = 2
EXIT_RENDER_FAILED = 3
EXIT_APPLY_FAILED = 4
