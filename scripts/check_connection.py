#!/usr/bin/env python3
"""
Probe the ledger node configured in .env.

Prints block height, signing account balance and whether contract code is
deployed at ETHEREUM_CONTRACT_ADDRESS. Exit code 0 when all three checks
pass.

Usage:
    python scripts/check_connection.py
    python scripts/check_connection.py --env /etc/gradechain/.env
"""
import argparse
import os
import sys

from dotenv import load_dotenv
from web3 import Web3

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def main():
    parser = argparse.ArgumentParser(description="Ledger node connectivity check")
    parser.add_argument("--env", default=os.path.join(project_root, ".env"))
    parser.add_argument("--timeout", type=float, default=10.0)
    args = parser.parse_args()

    load_dotenv(dotenv_path=args.env, override=True)
    rpc_url = os.getenv("ETHEREUM_RPC_URL", "http://localhost:8888")
    account = os.getenv("ETHEREUM_ACCOUNT", "")
    private_key = os.getenv("ETHEREUM_PRIVATE_KEY", "")
    contract = os.getenv("ETHEREUM_CONTRACT_ADDRESS", "")

    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": args.timeout}))
    print(f"RPC        : {rpc_url}")
    print(f"Mock mode  : {os.getenv('FORCE_MOCK_MODE', 'false')}")

    ok = True
    try:
        print(f"Chain id   : {w3.eth.chain_id}")
        print(f"Block      : {w3.eth.block_number}")
    except Exception as exc:
        print(f"Node       : UNREACHABLE ({exc})")
        sys.exit(1)

    if private_key:
        account = w3.eth.account.from_key(private_key).address
    if account:
        address = Web3.to_checksum_address(account)
        balance = w3.eth.get_balance(address)
        print(f"Account    : {address}")
        print(f"Balance    : {Web3.from_wei(balance, 'ether')} ETH")
        ok = ok and balance > 0
    else:
        print("Account    : not configured")
        ok = False

    if contract:
        code = w3.eth.get_code(Web3.to_checksum_address(contract))
        print(f"Contract   : {contract} ({'deployed' if len(code) > 0 else 'NO CODE'})")
        ok = ok and len(code) > 0
    else:
        print("Contract   : not configured")
        ok = False

    print(f"\n{'READY' if ok else 'NOT READY'} - service would run in "
          f"{'real' if ok else 'simulated'} mode")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
