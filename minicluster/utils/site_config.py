"""Generating of the property/value config documents for the metadata service.

The documents are pure functions of their inputs. Calling the functions twice with the same inputs
produces byte-identical files.

* `hive-site.xml` - metastore settings, including the Kerberos settings of its Thrift interface
* `core-site.xml` - just the `hadoop.security.authentication` property; Hadoop's identity layer
  (UGI) refuses to login a Kerberos user unless this property is set, and it searches for it only
  in places Hadoop knows about, so it can't live in `hive-site.xml`
"""

import logging
import pathlib as pl
import typing as tp
from xml.etree import ElementTree
from xml.sax import saxutils

import minicluster.utils.types as ttypes
from minicluster.utils import security as security_mod

LOGGER = logging.getLogger(__name__)

HIVE_SITE = "hive-site.xml"
CORE_SITE = "core-site.xml"

EVENT_LISTENERS = (
    "org.apache.hive.hcatalog.listener.DbNotificationListener,"
    "org.apache.kudu.hive.metastore.KuduMetastorePlugin"
)

PropertiesType = tp.Sequence[tuple[str, str]]


def render_properties(properties: PropertiesType) -> str:
    """Render the `<configuration>` document for the given properties, in the given order."""
    lines = ["<configuration>"]
    for name, value in properties:
        lines.extend(
            (
                "  <property>",
                f"    <name>{saxutils.escape(name)}</name>",
                f"    <value>{saxutils.escape(value)}</value>",
                "  </property>",
            )
        )
    lines.append("</configuration>")
    return "\n".join(lines) + "\n"


def get_hive_site_properties(
    conf_dir: ttypes.FileType,
    *,
    notification_log_ttl: float,
    security: security_mod.SecurityConfig | None = None,
) -> list[tuple[str, str]]:
    """Return properties of the `hive-site.xml` document.

    * `datanucleus.schema.autoCreateAll`, `hive.metastore.schema.verification` - allow the
      metastore to start without running the schema tool first
    * `hive.metastore.event.db.listener.timetolive` - how long notification log events are kept
    * `hive.metastore.sasl.enabled`, `hive.metastore.kerberos.*` - Kerberos for the Thrift RPC
      interface; simple mode is selected explicitly when security is not configured
    """
    conf_dir = pl.Path(conf_dir)
    return [
        ("hive.metastore.transactional.event.listeners", EVENT_LISTENERS),
        ("datanucleus.schema.autoCreateAll", "true"),
        ("hive.metastore.schema.verification", "false"),
        ("hive.metastore.warehouse.dir", f"file://{conf_dir}/warehouse/"),
        ("javax.jdo.option.ConnectionURL", f"jdbc:derby:memory:{conf_dir}/metadb;create=true"),
        ("hive.metastore.event.db.listener.timetolive", f"{int(notification_log_ttl)}s"),
        ("hive.metastore.sasl.enabled", "true" if security else "false"),
        ("hive.metastore.kerberos.keytab.file", security.keytab_file if security else ""),
        ("hive.metastore.kerberos.principal", security.service_principal if security else ""),
        (
            "hadoop.rpc.protection",
            str(security.protection if security else security_mod.SaslProtection.AUTHENTICATION),
        ),
    ]


def get_core_site_properties(
    security: security_mod.SecurityConfig | None = None,
) -> list[tuple[str, str]]:
    return [("hadoop.security.authentication", security_mod.get_auth_mode(security))]


def _write_doc(out_file: pl.Path, content: str) -> pl.Path:
    out_file.parent.mkdir(parents=True, exist_ok=True)
    out_file.write_text(content, encoding="utf-8")
    LOGGER.debug(f"Written '{out_file}'.")
    return out_file


def write_hive_site(
    conf_dir: ttypes.FileType,
    *,
    notification_log_ttl: float,
    security: security_mod.SecurityConfig | None = None,
) -> pl.Path:
    conf_dir = pl.Path(conf_dir)
    content = render_properties(
        get_hive_site_properties(
            conf_dir, notification_log_ttl=notification_log_ttl, security=security
        )
    )
    return _write_doc(conf_dir / HIVE_SITE, content)


def write_core_site(
    conf_dir: ttypes.FileType, *, security: security_mod.SecurityConfig | None = None
) -> pl.Path:
    content = render_properties(get_core_site_properties(security))
    return _write_doc(pl.Path(conf_dir) / CORE_SITE, content)


def write_site_docs(
    conf_dir: ttypes.FileType,
    *,
    notification_log_ttl: float,
    security: security_mod.SecurityConfig | None = None,
) -> tuple[pl.Path, pl.Path]:
    """Write both documents into `conf_dir`."""
    hive_site = write_hive_site(
        conf_dir, notification_log_ttl=notification_log_ttl, security=security
    )
    core_site = write_core_site(conf_dir, security=security)
    return hive_site, core_site


def parse_properties(in_file: ttypes.FileType) -> dict[str, str]:
    """Read the generated document back into a name -> value mapping."""
    root = ElementTree.parse(in_file).getroot()
    return {
        prop.findtext("name", default=""): prop.findtext("value", default="")
        for prop in root.iter("property")
    }
