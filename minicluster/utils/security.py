"""Settings for running nodes under a Kerberos (credentialed) identity."""

import dataclasses
import enum

import minicluster.utils.types as ttypes


class SaslProtection(enum.StrEnum):
    """Wire protection level, named the way Hadoop `hadoop.rpc.protection` expects it."""

    AUTHENTICATION = "authentication"
    INTEGRITY = "integrity"
    PRIVACY = "privacy"


@dataclasses.dataclass(frozen=True, order=True)
class SecurityConfig:
    krb5_conf: str
    service_principal: str
    keytab_file: str
    protection: SaslProtection = SaslProtection.AUTHENTICATION

    def __post_init__(self) -> None:
        for field in ("krb5_conf", "service_principal", "keytab_file"):
            if not getattr(self, field):
                msg = f"Security setting '{field}' must not be empty."
                raise ValueError(msg)
        # Accept plain strings for protection
        object.__setattr__(self, "protection", SaslProtection(self.protection))


def get_auth_mode(security: SecurityConfig | None) -> str:
    """Return value of the `hadoop.security.authentication` property."""
    return "kerberos" if security else "simple"


def get_security_env(
    security: SecurityConfig | None, base_env: ttypes.EnvType | None = None
) -> ttypes.EnvType:
    """Return env variables a node needs for running under the secured identity.

    The `JAVA_TOOL_OPTIONS` value from `base_env` is extended, not replaced.
    """
    if not security:
        return {}

    java_opts = (base_env or {}).get("JAVA_TOOL_OPTIONS", "")
    krb5_opt = f"-Djava.security.krb5.conf={security.krb5_conf}"
    return {
        "KRB5_CONFIG": security.krb5_conf,
        "JAVA_TOOL_OPTIONS": f"{java_opts} {krb5_opt}" if java_opts else krb5_opt,
    }


def get_security_flags(security: SecurityConfig | None) -> list[str]:
    """Return command line flags for master and worker nodes."""
    if not security:
        return []
    return [
        f"--keytab_file={security.keytab_file}",
        f"--principal={security.service_principal}",
        "--rpc_authentication=required",
        f"--rpc_protection={security.protection}",
    ]
