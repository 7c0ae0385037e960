import pytest

from minicluster.cluster_management import errors
from minicluster.cluster_management import nodes
from minicluster.utils import configuration
from minicluster.utils import security as security_mod

SECURITY = security_mod.SecurityConfig(
    krb5_conf="/etc/krb5.conf", service_principal="p@R", keytab_file="/k"
)


def test_spec_defaults():
    spec = nodes.ClusterSpec()
    assert spec.num_masters == 1
    assert spec.num_workers == 0
    assert spec.start_timeout == configuration.START_TIMEOUT
    assert spec.notification_log_ttl == configuration.NOTIFICATION_LOG_TTL
    assert spec.effective_security is None


def test_effective_security():
    assert nodes.ClusterSpec(security=SECURITY).effective_security is None
    assert (
        nodes.ClusterSpec(enable_kerberos=True, security=SECURITY).effective_security
        == SECURITY
    )


@pytest.mark.parametrize(
    "kwargs",
    (
        {"num_masters": -1},
        {"num_workers": -1},
        {"enable_kerberos": True},
        {"start_timeout": 0},
    ),
    ids=("negative_masters", "negative_workers", "kerberos_no_security", "zero_timeout"),
)
def test_invalid_spec(kwargs: dict):
    with pytest.raises(errors.ClusterConfigError):
        nodes.ClusterSpec(**kwargs)


def test_zero_nodes_allowed():
    spec = nodes.ClusterSpec(num_masters=0, num_workers=0)
    assert spec.num_masters == 0


def test_spec_is_immutable():
    spec = nodes.ClusterSpec()
    with pytest.raises(AttributeError):
        spec.num_masters = 2  # type: ignore[misc]
