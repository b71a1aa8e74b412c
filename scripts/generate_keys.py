"""
Genera el material criptográfico que necesita Laudofy:

- par RSA (RS256) para firmar los JWT, en ./keys/
- FERNET_KEY para el cifrado de campos sensibles
- BLIND_INDEX_KEY para el índice HMAC del CPF

    python scripts/generate_keys.py            # pregunta antes de sobrescribir
    python scripts/generate_keys.py --only-secrets
"""

import secrets
import sys
from pathlib import Path

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

KEYS_DIR = Path(__file__).parent.parent / "keys"


def write_rsa_pair(keys_dir: Path) -> bool:
    private_key_path = keys_dir / "private.pem"
    public_key_path = keys_dir / "public.pem"

    if private_key_path.exists():
        print(f"⚠️  Ya existe un par RSA en {keys_dir}")
        if input("¿Regenerarlo? Los tokens emitidos dejarán de validar (s/N): ").strip().lower() != "s":
            return False

    keys_dir.mkdir(exist_ok=True)
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    private_key_path.chmod(0o600)
    public_key_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    print(f"✅ Par RSA generado en {keys_dir}")
    return True


def main(argv: list[str]) -> None:
    if "--only-secrets" not in argv:
        write_rsa_pair(KEYS_DIR)

    fernet_key = Fernet.generate_key().decode()
    blind_index_key = secrets.token_urlsafe(32)

    # La FERNET_KEY actual debe pasar a FERNET_PREVIOUS_KEYS al rotar,
    # si no los campos ya cifrados quedan ilegibles.
    print("\n📌 Agrega a tu .env:")
    print(f"   JWT_PRIVATE_KEY_PATH=./keys/private.pem")
    print(f"   JWT_PUBLIC_KEY_PATH=./keys/public.pem")
    print(f"   FERNET_KEY={fernet_key}")
    print(f"   BLIND_INDEX_KEY={blind_index_key}")


if __name__ == "__main__":
    main(sys.argv[1:])
