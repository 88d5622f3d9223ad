import os
import csv
import sys
import logging
import argparse
from datetime import datetime

from cert_ledger.config import Settings
from cert_ledger.connectivity import ConnectivityResolver, PublicEndpoint, WalletProvider
from cert_ledger.errors import CertificateError
from cert_ledger.gateway import ContractGateway
from cert_ledger.ipfs import IpfsUploader
from cert_ledger.issuance import BatchIssuanceWorkflow, IssuanceWorkflow
from cert_ledger.links import gateway_url, tx_url
from cert_ledger.models import CertificateRow
from cert_ledger.registry import RegistryLookup
from cert_ledger.storage import LedgerStore, load_storage
from cert_ledger.verification import Classification, Verifier

logger = logging.getLogger(__name__)


def build_resolver(settings: Settings) -> ConnectivityResolver:
    wallet = None
    if settings.has_wallet:
        wallet = WalletProvider.from_mnemonic(
            settings.deployer_mnemonic, settings.wallet_algod_url, settings.wallet_algod_key
        )
    endpoints = [PublicEndpoint(url, settings.public_algod_key) for url in settings.public_algod_urls]
    return ConnectivityResolver(settings.chain_id, endpoints, wallet=wallet,
                                liveness_timeout=settings.liveness_timeout)


def build_gateway(settings: Settings) -> ContractGateway:
    return ContractGateway(build_resolver(settings), RegistryLookup(settings.registry_apps))


def build_ledger(settings: Settings) -> LedgerStore:
    return LedgerStore(load_storage(settings.ledger_path))


def fmt(ts: int) -> str:
    try:
        return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return str(ts)


def read_asset(path):
    if not path:
        return None, "certificate.bin"
    with open(path, "rb") as f:
        return f.read(), os.path.basename(path)


def cmd_issue(args, settings):
    asset, asset_name = read_asset(args.file)
    row = CertificateRow(name=args.name, course=args.course, class_name=args.class_name or "",
                         wallet=args.wallet or "", cid=args.cid or "", asset=asset,
                         asset_name=asset_name)
    workflow = IssuanceWorkflow(build_gateway(settings), build_ledger(settings),
                                uploader=IpfsUploader(settings.ipfs_api_url),
                                ipfs_gateway=settings.ipfs_gateway, explorer=settings.explorer_url)
    print("⏳ Issuing certificate (connecting, signing, waiting for confirmation)...")
    outcome = workflow.run(row)
    print(outcome.status if outcome.ok else f"❌ {outcome.status}")
    return 0 if outcome.ok else 1


def read_rows(path):
    rows = []
    with open(path, newline="", encoding="utf-8") as f:
        for item in csv.DictReader(f):
            file_path = (item.get("file") or "").strip()
            try:
                asset, asset_name = read_asset(file_path)
            except OSError as e:
                # the row then fails preflight as missing its cid
                logger.warning(f"Could not read certificate file {file_path}: {e}")
                asset, asset_name = None, os.path.basename(file_path)
            rows.append(CertificateRow(
                name=item.get("name") or "",
                course=item.get("course") or "",
                class_name=item.get("class_name") or item.get("className") or "",
                wallet=item.get("wallet") or "",
                cid=item.get("cid") or "",
                asset=asset,
                asset_name=asset_name,
            ))
    return rows


def cmd_bulk(args, settings):
    rows = read_rows(args.csv)
    workflow = BatchIssuanceWorkflow(build_gateway(settings), build_ledger(settings),
                                     uploader=IpfsUploader(settings.ipfs_api_url),
                                     ipfs_gateway=settings.ipfs_gateway, explorer=settings.explorer_url)
    print(f"⏳ Preparing {len(rows)} rows for one transaction...")
    outcome = workflow.run(rows)
    for result in outcome.rows:
        label = result.row.name or "-"
        if result.issued:
            print(f"   row {result.index + 1} ({label}): ✅ issued, CID {result.cid}")
        elif result.error:
            print(f"   row {result.index + 1} ({label}): {result.error}")
    print(outcome.status if outcome.ok else f"❌ {outcome.status}")
    return 0 if outcome.ok else 1


def cmd_list(args, settings):
    records = build_ledger(settings).search(args.search or "")
    if not records:
        print("No certificates stored yet.")
        return 0
    for r in records:
        status = "REVOKED" if r.revoked else "active"
        print(f"{r.cid}  {r.name} | {r.course} | {r.class_name or '-'} | {fmt(r.issued_at)} | {status}")
        if r.tx_hash:
            print(f"   tx: {tx_url(r.tx_hash, settings.explorer_url)}")
    return 0


def cmd_revoke(args, settings, value=True):
    ledger = build_ledger(settings)
    if not ledger.exists(args.cid):
        print(f"⚪ {args.cid} is not in the local ledger.")
        return 1
    ledger.set_revoked(args.cid, value)
    print(f"{'⚠ Revoked' if value else '✅ Restored'} {args.cid} (local only)")
    return 0


def cmd_remove(args, settings):
    build_ledger(settings).remove(args.cid)
    print(f"Removed {args.cid} from the local ledger.")
    return 0


def cmd_clear(args, settings):
    if not args.yes:
        print("Refusing to clear the local ledger without --yes.")
        return 1
    build_ledger(settings).clear()
    print("Local ledger cleared.")
    return 0


def display_verification(result, settings):
    if result.classification == Classification.NOT_FOUND:
        print(f"⚪ Certificate NOT FOUND ({result.source}).")
        if not result.authoritative:
            print("   Only certificates issued from this machine can be verified locally.")
        return

    if result.on_chain is not None:
        cert = result.on_chain
        print("✅ Certificate is VALID (on-chain).")
        print(f"   Student: {cert.name}")
        print(f"   Course: {cert.course}")
        print(f"   Issuer: {cert.issuer}")
        print(f"   Issued At: {fmt(cert.issued_at)}")
        return

    rec = result.record
    if result.classification == Classification.REVOKED:
        print("⚠ Certificate found, but it has been REVOKED by the admin.")
    else:
        print("✅ Certificate is VALID (based on admin-issued records, not chain proof).")
    print(f"   Student: {rec.name}")
    print(f"   Course: {rec.course}")
    print(f"   Class / Batch: {rec.class_name or '-'}")
    print(f"   CID / ID: {rec.cid}")
    print(f"   Issued At: {fmt(rec.issued_at)}")
    print(f"   Preview: {gateway_url(rec.image_cid, settings.ipfs_gateway)}")
    if rec.tx_hash:
        print(f"   Blockchain Tx: {tx_url(rec.tx_hash, settings.explorer_url)}")


def cmd_verify(args, settings):
    mode = args.mode or settings.verify_mode
    if mode == "local":
        verifier = Verifier(mode, ledger=build_ledger(settings))
    else:
        verifier = Verifier(mode, gateway=build_gateway(settings))
    display_verification(verifier.verify(args.cid), settings)
    return 0


def cmd_upload(args, settings):
    data, name = read_asset(args.file)
    cid = IpfsUploader(settings.ipfs_api_url).upload(data, name)
    print(f"Uploaded ✅ CID: {cid}")
    print(f"Preview: {gateway_url(cid, settings.ipfs_gateway)}")
    return 0


def cmd_resolve(args, settings):
    resolver = build_resolver(settings)
    channel = resolver.resolve()
    print(f"🔗 {channel.describe()}")
    app_id = RegistryLookup(settings.registry_apps).resolve_address(channel, "Certificate")
    print(f"📜 Certificate app: {app_id}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="cert-ledger",
                                     description="Issue and verify certificates on Algorand.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("issue", help="issue one certificate")
    p.add_argument("--name", required=True)
    p.add_argument("--course", required=True)
    p.add_argument("--class-name", dest="class_name")
    p.add_argument("--wallet", help="student wallet address (optional)")
    p.add_argument("--cid", help="IPFS CID of the certificate")
    p.add_argument("--file", help="upload this file and use its CID")
    p.set_defaults(func=cmd_issue)

    p = sub.add_parser("bulk", help="issue every row of a CSV in one transaction")
    p.add_argument("csv", help="columns: name,course,class_name,wallet,cid,file")
    p.set_defaults(func=cmd_bulk)

    p = sub.add_parser("list", help="list locally issued certificates")
    p.add_argument("--search", help="filter by name, course, class or CID")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("revoke", help="mark a certificate revoked (local only)")
    p.add_argument("cid")
    p.set_defaults(func=lambda a, s: cmd_revoke(a, s, True))

    p = sub.add_parser("restore", help="clear the revoked flag (local only)")
    p.add_argument("cid")
    p.set_defaults(func=lambda a, s: cmd_revoke(a, s, False))

    p = sub.add_parser("remove", help="delete one record from the local ledger")
    p.add_argument("cid")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("clear", help="delete every record from the local ledger")
    p.add_argument("--yes", action="store_true")
    p.set_defaults(func=cmd_clear)

    p = sub.add_parser("verify", help="verify a certificate by CID")
    p.add_argument("cid")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--local", dest="mode", action="store_const", const="local")
    group.add_argument("--chain", dest="mode", action="store_const", const="chain")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("upload", help="upload a file to IPFS")
    p.add_argument("file")
    p.set_defaults(func=cmd_upload)

    p = sub.add_parser("resolve", help="show which channel and certificate app would be used")
    p.set_defaults(func=cmd_resolve)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = Settings.from_env()
        return args.func(args, settings)
    except CertificateError as e:
        print(f"❌ {e}")
        for detail in getattr(e, "details", []):
            print(f"   - {detail}")
        return 1
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        print(f"❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
