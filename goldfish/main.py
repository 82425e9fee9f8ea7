#!/usr/bin/env python3
"""
goldfish server - vault administration UI backend

Startup order:
  shutdown observer -> (dev vault | config file) -> vault client config
  -> wrapping token bootstrap -> transport selection -> app -> listeners

Nothing listens until the bootstrap step has succeeded or been skipped.
"""

import argparse
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .certificates.certificate_manager import CertificateError
from .core.config import ConfigError, DeploymentConfig, load_config_from
from .core.lifecycle import ShutdownObserver
from .core.listeners import ListenerError, run_listeners
from .core.server import create_app
from .transport import describe, resolve_transport
from .vault.bootstrap import BootstrapError, bootstrap_credentials
from .vault.client import VaultClient, vault_client
from .vault.dev import DevVault, DevVaultError

logger = logging.getLogger("goldfish")

VERSION_STRING = f"Goldfish version: v{__version__}"

DEV_INIT_STRING = """
---------------------------------------------------
Starting local vault dev instance...
Your unseal token and root token can be found above
"""

INIT_STRING = """
Goldfish successfully bootstrapped to vault
"""

FATAL_ERRORS = (ConfigError, DevVaultError, BootstrapError, CertificateError, ListenerError)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="goldfish server")
    parser.add_argument("--dev", action="store_true",
                        help="run against a local vault dev instance. DO NOT USE IN PRODUCTION")
    parser.add_argument("--version", action="store_true", help="print goldfish's version and exit")
    parser.add_argument("--token", default=os.environ.get("GOLDFISH_TOKEN", ""),
                        help="wrapped token holding goldfish's vault token (env: GOLDFISH_TOKEN)")
    parser.add_argument("-c", "--config", default=os.environ.get("GOLDFISH_CONFIG", ""),
                        help="path of the deployment config YAML file (env: GOLDFISH_CONFIG)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="logging level (default: from config, else INFO)")
    return parser.parse_args(argv)


def start(args: argparse.Namespace, observer: ShutdownObserver, client: VaultClient = vault_client,
          dev_vault: Optional[DevVault] = None) -> None:
    """Run goldfish until the primary listener stops. Fatal errors propagate."""
    wrapping_token = args.token

    if args.dev:
        if args.config:
            logger.warning("--dev given; ignoring --config %s", args.config)
        dev_vault = dev_vault or DevVault()
        # attached before start(): a signal during readiness polling must still stop the subprocess
        observer.attach(dev_vault.liveness)
        backend = dev_vault.start()
        config: DeploymentConfig = backend.config
        wrapping_token = backend.wrapping_token
        print(DEV_INIT_STRING)
        print(f"root token: {backend.root_token}")
        print(f"wrapping token: {wrapping_token}")
    elif args.config:
        config = load_config_from(args.config)
    else:
        raise ConfigError("no configuration source: pass --config <file> or --dev")

    if not args.log_level:
        logging.getLogger().setLevel(config.log_level.upper())

    client.set_config(config.vault)
    if bootstrap_credentials(client, wrapping_token, dev_mode=args.dev):
        print(VERSION_STRING + INIT_STRING)

    plan = resolve_transport(config.listener)
    logger.info("transport: %s", describe(plan.primary))
    if plan.redirect is not None:
        logger.info("redirect: %s", describe(plan.redirect))

    app = create_app(plan, client, dev_mode=args.dev, assets_dir=config.assets_dir)
    run_listeners(plan, app)


def main(argv=None) -> int:
    """Main entry point for goldfish server."""
    load_dotenv()
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level or "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version:
        print(VERSION_STRING)
        return 0

    observer = ShutdownObserver().install()
    dev_vault = DevVault() if args.dev else None
    try:
        start(args, observer, dev_vault=dev_vault)
    except FATAL_ERRORS as e:
        logger.error("goldfish failed to start: %s", e)
        return 1
    finally:
        if observer.triggered:
            # let the observer finish its grace period and exit
            observer.join()
        if dev_vault is not None:
            dev_vault.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
