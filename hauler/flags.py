"""Options for the store commands and the command-line flags that set them."""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Any

from hauler.oci import Layout

DEFAULT_STORE_NAME = "store"
DEFAULT_ARCHIVE_NAME = "haul.tar.zst"

_log = logging.getLogger(__name__)


def _check_tls_pair(cert: str, key: str) -> None:
    missing = [name for name, value in (("tls-cert", cert), ("tls-key", key)) if not value]
    if len(missing) == 1:
        raise ValueError(
            "if any flags in the group [tls-cert tls-key] are set they must all be set; "
            f"missing [{missing[0]}]"
        )


@dataclass
class CliRootOpts:
    """Options shared by every command."""

    log_level: str = "info"


@dataclass
class StoreRootOpts:
    """Options shared by every store command."""

    store_dir: str = DEFAULT_STORE_NAME
    cache_dir: str = ""

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-s",
            "--store",
            dest="store_dir",
            default=DEFAULT_STORE_NAME,
            help="(Optional) Specify the directory to use for the content store",
        )
        parser.add_argument(
            "--cache",
            dest="cache_dir",
            default="",
            help="(deprecated flag and currently not used)",
        )

    def store(self) -> Layout:
        """Open the content store, creating its directory if it is missing."""
        path = os.path.abspath(self.store_dir)
        _log.debug("using store at %s", path)
        if not os.path.exists(path):
            os.mkdir(path)
        return Layout(path)


@dataclass
class CopyOpts(StoreRootOpts):
    """Options for copying store content elsewhere."""

    username: str = ""
    password: str = ""
    insecure: bool = False
    plain_http: bool = False

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-u", "--username", dest="username", default="",
            help="(Optional) Username to use for authentication",
        )
        parser.add_argument(
            "-p", "--password", dest="password", default="",
            help="(Optional) Password to use for authentication",
        )
        parser.add_argument(
            "--insecure", dest="insecure", action="store_true",
            help="(Optional) Allow insecure connections",
        )
        parser.add_argument(
            "--plain-http", dest="plain_http", action="store_true",
            help="(Optional) Allow plain HTTP connections",
        )


@dataclass
class ExtractOpts(StoreRootOpts):
    """Options for extracting artifacts from the store."""

    destination_dir: str = ""

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-o", "--output", dest="destination_dir", default="",
            help="(Optional) Specify the directory to output (defaults to current directory)",
        )


@dataclass
class InfoOpts(StoreRootOpts):
    """Options for listing store content."""

    output_format: str = "table"
    type_filter: str = "all"
    size_unit: str = ""
    list_repos: bool = False

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-o", "--output", dest="output_format", default="table",
            help="(Optional) Specify the output format (table | json)",
        )
        parser.add_argument(
            "-t", "--type", dest="type_filter", default="all",
            help="(Optional) Filter on content type (image | chart | file | sigs | atts | sbom)",
        )
        parser.add_argument(
            "--list-repos", dest="list_repos", action="store_true",
            help="(Optional) List all repository names",
        )


@dataclass
class LoadOpts(StoreRootOpts):
    """Options for loading store archives."""

    temp_override: str = ""

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-t", "--tempdir", dest="temp_override", default="",
            help="(Optional) Override the default temporary directory determined by the OS",
        )


@dataclass
class SaveOpts(StoreRootOpts):
    """Options for saving the store to an archive."""

    file_name: str = DEFAULT_ARCHIVE_NAME
    platform: str = ""

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-f", "--filename", dest="file_name", default=DEFAULT_ARCHIVE_NAME,
            help="(Optional) Specify the name of outputted archive",
        )
        parser.add_argument(
            "-p", "--platform", dest="platform", default="",
            help="(Optional) Specify the platform for runtime imports... i.e. linux/amd64 "
            "(unspecified implies all)",
        )


@dataclass
class ServeRegistryOpts(StoreRootOpts):
    """Options for serving the store as a registry."""

    port: int = 5000
    root_dir: str = "registry"
    config_file: str = ""
    read_only: bool = True
    tls_cert: str = ""
    tls_key: str = ""

    def __post_init__(self) -> None:
        _check_tls_pair(self.tls_cert, self.tls_key)

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-p", "--port", dest="port", type=int, default=5000,
            help="(Optional) Specify the port to use for incoming connections",
        )
        parser.add_argument(
            "--directory", dest="root_dir", default="registry",
            help="(Optional) Directory to use for backend. Defaults to $PWD/registry",
        )
        parser.add_argument(
            "-c", "--config", dest="config_file", default="",
            help="(Optional) Location of config file (overrides all flags)",
        )
        parser.add_argument(
            "--readonly", dest="read_only", action=argparse.BooleanOptionalAction, default=True,
            help="(Optional) Run the registry as readonly",
        )
        parser.add_argument(
            "--tls-cert", dest="tls_cert", default="",
            help="(Optional) Location of the TLS Certificate to use for server authentication",
        )
        parser.add_argument(
            "--tls-key", dest="tls_key", default="",
            help="(Optional) Location of the TLS Key to use for server authentication",
        )

    def default_registry_config(self) -> dict[str, Any]:
        """Return the registry configuration these options describe."""
        http: dict[str, Any] = {
            "addr": f":{self.port}",
            "headers": {"X-Content-Type-Options": ["nosniff"]},
        }
        if self.tls_cert and self.tls_key:
            http["tls"] = {"certificate": self.tls_cert, "key": self.tls_key}
        return {
            "version": "0.1",
            "storage": {
                "cache": {"blobdescriptor": "inmemory"},
                "filesystem": {"rootdirectory": self.root_dir},
                "maintenance": {"readonly": {"enabled": self.read_only}},
            },
            "http": http,
            "log": {"level": "info"},
            "validation": {"manifests": {"urls": {"allow": [".+"]}}},
        }


@dataclass
class ServeFilesOpts(StoreRootOpts):
    """Options for serving the store's files over HTTP."""

    port: int = 8080
    timeout: int = 60
    root_dir: str = "fileserver"
    tls_cert: str = ""
    tls_key: str = ""

    def __post_init__(self) -> None:
        _check_tls_pair(self.tls_cert, self.tls_key)

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-p", "--port", dest="port", type=int, default=8080,
            help="(Optional) Specify the port to use for incoming connections",
        )
        parser.add_argument(
            "-t", "--timeout", dest="timeout", type=int, default=60,
            help="(Optional) Timeout duration for HTTP Requests in seconds for both reads/writes",
        )
        parser.add_argument(
            "--directory", dest="root_dir", default="fileserver",
            help="(Optional) Directory to use for backend. Defaults to $PWD/fileserver",
        )
        parser.add_argument(
            "--tls-cert", dest="tls_cert", default="",
            help="(Optional) Location of the TLS Certificate to use for server authentication",
        )
        parser.add_argument(
            "--tls-key", dest="tls_key", default="",
            help="(Optional) Location of the TLS Key to use for server authentication",
        )