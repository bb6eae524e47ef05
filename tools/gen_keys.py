import argparse
import os

import nacl.utils

from veritaslog.keys import Ed25519Identity
from veritaslog.util import b64e


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate local VeritasLog key material")
    parser.add_argument("-n", "--key-servers", type=int, default=3, help="Number of local key servers")
    parser.add_argument("-o", "--output", default="secrets/veritaslog.env", help="Env file to write")
    args = parser.parse_args(argv)

    sponsor = Ed25519Identity.generate()
    secrets = [b64e(nacl.utils.random(32)) for _ in range(args.key_servers)]

    out_dir = os.path.dirname(args.output)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as f:
        f.write(f"VERITASLOG_SPONSOR_SECRET_KEY={sponsor.secret_b64()}\n")
        f.write(f"VERITASLOG_KEY_SERVER_SECRETS={','.join(secrets)}\n")
        f.write(f"VERITASLOG_KEY_SERVER_COUNT={args.key_servers}\n")

    print(f"Sponsor address: {sponsor.address}")
    print(f"Generated {args.key_servers} key server secrets -> {args.output}")


if __name__ == "__main__":
    main()
