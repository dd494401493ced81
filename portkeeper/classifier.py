"""
Process type classification

Ordered heuristic table matched against the process name and command line.
The first matching rule wins; anything unmatched is ``ProcessType.OTHER``.
"""

import re
from typing import Optional, Pattern, Tuple

from .models import ProcessType


def _names(*names: str) -> Pattern:
    # Name must match from the start and not run on into more letters
    return re.compile(r"^(?:%s)(?![a-z])" % "|".join(names))


CLASSIFICATION_RULES: Tuple[Tuple[ProcessType, Pattern, Optional[Pattern]], ...] = (
    (
        ProcessType.WEB_SERVER,
        _names(r"nginx", r"httpd", r"apache2?", r"caddy", r"traefik", r"lighttpd",
               r"haproxy", r"envoy", r"h2o", r"openresty"),
        None,
    ),
    (
        ProcessType.DATABASE,
        _names(r"postgres", r"postmaster", r"mysqld?", r"mariadbd?", r"mongod", r"mongos",
               r"redis-server", r"redis", r"valkey-server", r"memcached", r"elasticsearch",
               r"opensearch", r"clickhouse(?:-server)?", r"cockroach", r"couchdb",
               r"cassandra", r"influxd", r"neo4j", r"rethinkdb", r"etcd", r"sqlservr"),
        None,
    ),
    (
        ProcessType.DEVELOPMENT,
        _names(r"node", r"nodejs", r"deno", r"bun", r"python\d*(?:\.\d+)?", r"ruby",
               r"java", r"php(?:-fpm)?", r"go", r"dotnet", r"beam\.smp", r"erl", r"elixir",
               r"cargo", r"uvicorn", r"gunicorn", r"hypercorn", r"flask", r"puma",
               r"rails", r"vite", r"webpack", r"esbuild", r"next-server", r"code helper"),
        re.compile(r"(manage\.py runserver|npm run|yarn (?:dev|start)|pnpm (?:dev|start)"
                   r"|next dev|rails server|flask run|jupyter|webpack-dev-server)"),
    ),
    (
        ProcessType.SYSTEM,
        _names(r"launchd", r"systemd(?:-[a-z]+)?", r"rapportd", r"sshd", r"cupsd",
               r"mdnsresponder", r"controlcenter", r"sharingd", r"airplayxpchelper",
               r"identityservicesd", r"kernel_task", r"dnsmasq", r"chronyd", r"ntpd",
               r"avahi-daemon", r"rpcbind", r"smbd", r"nmbd", r"containerd", r"dockerd",
               r"remoted", r"netbiosd"),
        re.compile(r"^/(?:usr/libexec|system/library|usr/sbin|sbin)/"),
    ),
)


def classify_process(process_name: str, command: str = "") -> ProcessType:
    """Classify a process by its executable name and command line"""
    name = (process_name or "").strip().lower()
    cmdline = (command or "").strip().lower()

    for process_type, name_pattern, command_pattern in CLASSIFICATION_RULES:
        if name and name_pattern.search(name):
            return process_type
        if cmdline and command_pattern is not None and command_pattern.search(cmdline):
            return process_type

    return ProcessType.OTHER
