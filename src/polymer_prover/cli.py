"""Control tool for the Polymer prover (``proverctl``).

Runs one prover operation per invocation against a local execution host.
Use ``--db`` (or PROVER_DB_PATH) to keep accounts between runs; without it
the host lives in memory for the duration of the command.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv
from eth_account import Account

from .client import ProverClient
from .config import ProverConfig, TrustAnchorConfig
from .errors import InvalidArgument, ProverError
from .host import ExecutionHost
from .models import address_to_hex
from .program import ProofProgram

logger = logging.getLogger(__name__)

READ_ONLY_COMMANDS = ("show-config", "show-result")


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proverctl",
        description="Polymer prover control tool - load and validate event proofs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  PRIVATE_KEY           - Caller private key (can be overridden with --private-key)
  PROVER_DB_PATH        - SQLite account store (can be overridden with --db)
  PROGRAM_ID            - Prover program id (default: polymer_prover)
  CLIENT_TYPE           - Peptide client type for initialize (default: proof_api)
  SIGNER_ADDRESS        - Peptide state root signer for initialize
  PEPTIDE_CHAIN_ID      - Peptide chain id for initialize
  PROOF_CACHE_CAPACITY  - Proof cache size in bytes (default: 3000)
  CHUNK_SIZE            - Bytes per load_proof call (default: 800)
  LOG_LEVEL             - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument("--db", default=os.environ.get("PROVER_DB_PATH"), help="SQLite account store path")
    parser.add_argument("--private-key", default=os.environ.get("PRIVATE_KEY"), help="Caller private key")
    parser.add_argument("--program-id", default=None, help="Prover program id")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "WARNING"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: WARNING)"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("initialize", help="Write the trust anchor (once)")
    init.add_argument("--client-type", default=os.environ.get("CLIENT_TYPE", "proof_api"))
    init.add_argument("--signer-address", default=os.environ.get("SIGNER_ADDRESS", ""))
    init.add_argument("--peptide-chain-id", type=int, default=None)

    commands.add_parser("create-accounts", help="Create the caller's proof cache and result records")

    load = commands.add_parser("load-proof", help="Load a proof into the caller's cache in chunks")
    source = load.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", type=Path, help="File holding the raw proof bytes")
    source.add_argument("--hex", help="Proof as a hex string")
    load.add_argument("--chunk-size", type=int, default=None, help="Bytes per load_proof call")
    load.add_argument("--validate", action="store_true", help="Validate once every chunk is loaded")

    commands.add_parser("validate-event", help="Validate the cached proof")
    commands.add_parser("clear-cache", help="Empty the caller's proof cache")

    resize = commands.add_parser("resize-cache", help="Resize the caller's proof cache")
    resize.add_argument("--capacity", type=int, default=None, help="New capacity in bytes")

    commands.add_parser("close-accounts", help="Delete the caller's records and refund the deposit")
    commands.add_parser("show-config", help="Print the trust anchor")

    show_result = commands.add_parser("show-result", help="Print the latest validation result")
    show_result.add_argument("--owner", default=None, help="Address to read (defaults to the caller)")

    return parser


def load_config(args: argparse.Namespace) -> ProverConfig:
    """Environment configuration with command-line overrides applied."""
    config = ProverConfig.from_env()
    if args.program_id:
        config = replace(config, program_id=args.program_id)
    if args.db:
        config = replace(config, host=replace(config.host, db_path=args.db))
    if getattr(args, "capacity", None) is not None:
        cache = replace(config.cache, capacity=args.capacity)
        config = replace(config, cache=cache, chunk_size=min(config.chunk_size, cache.capacity))
    if getattr(args, "chunk_size", None) is not None:
        config = replace(config, chunk_size=args.chunk_size)
    return config


def read_proof(args: argparse.Namespace) -> bytes:
    if args.file is not None:
        return args.file.read_bytes()
    try:
        return bytes.fromhex(args.hex.removeprefix("0x"))
    except ValueError as e:
        raise InvalidArgument(f"proof is not valid hex: {e}") from e


async def run_command(args: argparse.Namespace, client: ProverClient) -> str:
    """Execute the selected subcommand and return the text to print."""
    match args.command:
        case "initialize":
            chain_id = args.peptide_chain_id
            if chain_id is None:
                if not os.environ.get("PEPTIDE_CHAIN_ID"):
                    raise InvalidArgument("peptide chain id is required (--peptide-chain-id or PEPTIDE_CHAIN_ID)")
                chain_id = int(os.environ["PEPTIDE_CHAIN_ID"])
            anchor_config = TrustAnchorConfig(
                client_type=args.client_type,
                signer_address=args.signer_address,
                chain_id=chain_id,
            )
            anchor = await client.initialize(
                anchor_config.client_type, anchor_config.signer_bytes, anchor_config.chain_id
            )
            return (
                f"trust anchor successfully initialized: client_type={anchor.client_type}, "
                f"signer={address_to_hex(anchor.signer_address)}, peptide_chain_id={anchor.chain_id}"
            )

        case "create-accounts":
            deposit = await client.create_accounts()
            return f"accounts successfully created for {client.address} (deposit: {deposit})"

        case "load-proof":
            proof = read_proof(args)
            if args.validate:
                result = await client.submit_proof(proof)
                return f"loaded {len(proof)} bytes; {result}"
            cached = await client.upload_proof(proof)
            return f"proof successfully loaded: {cached} bytes cached"

        case "validate-event":
            result = await client.validate_event()
            return f"{result}"

        case "clear-cache":
            await client.clear_proof_cache()
            return "proof cache successfully cleared"

        case "resize-cache":
            delta = await client.resize_proof_cache()
            cache = client.fetch_proof_cache()
            return f"proof cache successfully resized to {cache.capacity} bytes (deposit change: {delta})"

        case "close-accounts":
            refund = await client.close_accounts()
            return f"accounts successfully closed for {client.address} (refund: {refund})"

        case "show-config":
            anchor = client.fetch_config()
            if anchor is None:
                return "trust anchor not initialized"
            return (
                f"client_type: {anchor.client_type}\n"
                f"signer_address: {address_to_hex(anchor.signer_address)}\n"
                f"peptide_chain_id: {anchor.chain_id}\n"
                f"authority: {anchor.authority}"
            )

        case "show-result":
            result = client.fetch_result(args.owner)
            if result is None:
                return "no result account"
            lines = [
                f"is_valid: {result.is_valid}",
                f"error_message: {result.error_message}",
                f"chain_id: {result.chain_id}",
                f"emitting_contract: {address_to_hex(result.emitting_contract)}",
            ]
            lines += [f"topic[{i}]: 0x{topic.hex()}" for i, topic in enumerate(result.topics)]
            lines.append(f"unindexed_data: 0x{result.unindexed_data.hex()}")
            return "\n".join(lines)

    raise InvalidArgument(f"unknown command: {args.command}")


async def main(argv: list[str] | None = None) -> int:
    """Main entry point for proverctl.

    Returns:
        Process exit code
    """
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args)
    except ValueError as e:
        print(f"Error [InvalidConfiguration]: {e}", file=sys.stderr)
        return 1
    config.log_config()

    host = ExecutionHost(config=config.host)
    try:
        ProofProgram(host, config)
        if args.private_key:
            account = Account.from_key(args.private_key)
        elif args.command in READ_ONLY_COMMANDS:
            # reads sign nothing; the key only picks the default owner
            account = Account.create()
        else:
            print("Error [UnauthorizedCaller]: a private key is required (--private-key or PRIVATE_KEY)",
                  file=sys.stderr)
            return 1

        client = ProverClient(host, account, program_id=config.program_id, chunk_size=config.chunk_size)
        print(await run_command(args, client))
        return 0
    except ProverError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error [InvalidArgument]: {e}", file=sys.stderr)
        return 1
    finally:
        host.store.close()


def entrypoint() -> None:
    sys.exit(asyncio.run(main()))
