from __future__ import annotations

import asyncio
import getpass
import logging
import stat
import sys
from importlib.resources import files
from pathlib import Path


def _check_keyring_available() -> bool:
    """Check if keyring is installed with a usable backend."""
    try:
        import keyring
        from keyring.backends.fail import Keyring as FailKeyring

        return not isinstance(keyring.get_keyring(), FailKeyring)
    except Exception:
        return False


def _upsert_env_var(env_file: Path, key: str, value: str) -> None:
    """Set or update a key=value pair in a .env file, creating it if needed."""
    from dotenv import set_key

    env_file.parent.mkdir(parents=True, exist_ok=True)
    if not env_file.exists():
        env_file.touch()
    set_key(str(env_file), key, value)


def _remove_env_var(env_file: Path, key: str) -> None:
    from dotenv import unset_key

    if env_file.exists():
        unset_key(str(env_file), key)


def _warn_open_permissions(env_file: Path) -> None:
    """Warn if .env file has group/other read permissions (Unix only)."""
    try:
        mode = env_file.stat().st_mode
        if mode & (stat.S_IRGRP | stat.S_IROTH):
            print(f"\n  AVISO: {env_file} tiene permisos abiertos.")
            print("  Recomendacion: chmod 600", env_file)
    except OSError:
        pass


def _setup_certificate(config_dir: Path) -> bool:
    """Interactive certificate setup. Returns True if the certificate was configured."""
    print()
    print("Configuracion del certificado digital ARCA")
    print("──────────────────────────────────────────")
    print()

    while True:
        pfx_path = input("Ruta del certificado .pfx/.p12 (vacio para omitir): ").strip()
        if not pfx_path:
            print("  Configuracion del certificado omitida.")
            return False
        if Path(pfx_path).is_file():
            break
        print(f"  Archivo no encontrado: {pfx_path}")

    pfx_password = getpass.getpass("Contraseña del certificado: ")

    print()
    print("Validando certificado…")
    try:
        from facturador.utils.certificate import validate_certificate

        info = validate_certificate(pfx_path, pfx_password)
    except (ValueError, OSError) as e:
        print(f"  ERROR: certificado invalido o contraseña incorrecta: {e}")
        print("  Configuracion del certificado cancelada.")
        return False

    print(f"  Titular: {info['subject']}")
    print(f"  Valido hasta: {info['not_after']}")
    if info["valid"]:
        print("  Certificado vigente")
    else:
        print("  AVISO: certificado vencido")

    env_file = config_dir / ".env"
    _upsert_env_var(env_file, "CERT_PFX_PATH", pfx_path)

    print()
    print("¿Donde desea guardar la contraseña?")

    keyring_ok = _check_keyring_available()
    options: list[tuple[str, str]] = []
    if keyring_ok:
        options.append(("1", "Llavero del sistema (recomendado)"))
    options.append(("2", "Archivo .env en el directorio de configuracion"))
    options.append(("3", "No guardarla (definirla manualmente)"))

    for num, label in options:
        print(f"  {num}. {label}")

    if not keyring_ok:
        print()
        print("  Nota: llavero del sistema no disponible.")

    print()
    valid_choices = {num for num, _ in options}
    choice = ""
    while choice not in valid_choices:
        choice = input(f"Opcion [{'/'.join(sorted(valid_choices))}]: ").strip()

    from facturador.config import _delete_keyring_password, _set_keyring_password

    if choice == "1" and keyring_ok:
        if _set_keyring_password(pfx_password):
            print("  Contraseña guardada en el llavero del sistema.")
            _remove_env_var(env_file, "CERT_PFX_PASSWORD")
        else:
            print("  ERROR: no se pudo usar el llavero. Se guarda en .env.")
            _upsert_env_var(env_file, "CERT_PFX_PASSWORD", pfx_password)
            _warn_open_permissions(env_file)
    elif choice == "2":
        _upsert_env_var(env_file, "CERT_PFX_PASSWORD", pfx_password)
        print(f"  Contraseña guardada en {env_file}")
        _warn_open_permissions(env_file)
        _delete_keyring_password()
    else:
        _remove_env_var(env_file, "CERT_PFX_PASSWORD")
        _delete_keyring_password()
        print("  Contraseña no guardada.")
        print("  Defina CERT_PFX_PASSWORD antes de usar facturador.")

    return True


def _init_config() -> None:
    """Copy bundled config templates to the user's config/data directories."""
    from facturador.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    templates = files("facturador") / "templates"

    config_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    copied = 0
    for rel in ["credentials.yaml.example"]:
        dest = config_dir / rel
        if dest.exists():
            print(f"  ya existe: {dest}")
            continue
        with (templates / rel).open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  creado: {dest}")
        copied += 1

    print()
    print(f"Configuracion: {config_dir}")
    print(f"Datos:         {data_dir}")

    print()
    cert_configured = False
    try:
        answer = input("¿Configurar el certificado digital ahora? [S/n]: ").strip().lower()
        if answer in ("", "s", "si", "y", "yes"):
            cert_configured = _setup_certificate(config_dir)
    except (EOFError, KeyboardInterrupt):
        print()

    print()
    if copied:
        print("Proximos pasos:")
        print(f"  1. cp {config_dir / 'credentials.yaml.example'} {config_dir / 'credentials.yaml'}")
        print("  2. Complete credentials.yaml con su CUIT y punto de venta")
        if not cert_configured:
            print("  3. Cree un .env con CERT_PFX_PATH y CERT_PFX_PASSWORD")
            print("  4. Ejecute: facturador status")
        else:
            print("  3. Ejecute: facturador status")
    else:
        print("No se crearon archivos nuevos (ya existian).")


def _preflight() -> bool:
    """Verify minimal config before talking to ARCA."""
    from facturador.config import get_config_dir, get_data_dir

    get_data_dir().mkdir(parents=True, exist_ok=True)

    config_dir = get_config_dir()
    if not (config_dir / "credentials.yaml").is_file():
        print(f"Error: credentials.yaml no encontrado en {config_dir}")
        print("Ejecute 'facturador init' y configure el emisor.")
        return False
    return True


def _load_credentials():
    """Issuer data from credentials.yaml plus the certificate from the environment."""
    from facturador.config import get_cert_password, get_cert_path, load_issuer
    from facturador.models.credentials import CertificateBundle, Credentials

    issuer = load_issuer()
    creds = Credentials.from_dict(issuer)
    try:
        pfx_path = get_cert_path()
    except KeyError:
        return creds

    try:
        password = get_cert_password()
    except KeyError:
        password = None
    bundle = CertificateBundle(pfx_path=pfx_path, password=password)
    if password is not None:
        try:
            bundle = CertificateBundle.from_pfx(pfx_path, password)
        except (ValueError, OSError) as e:
            print(f"AVISO: no se pudo leer el certificado: {e}")
    return Credentials(
        tax_id=creds.tax_id,
        legal_name=creds.legal_name,
        point_of_sale=creds.point_of_sale,
        certificate=bundle,
        environment=creds.environment,
    )


async def _open_client():
    from facturador.config import get_retry_interval, load_policy
    from facturador.services.arca_client import ArcaClient
    from facturador.services.credential_store import CredentialStore
    from facturador.services.invoicing_client import InvoicingClient
    from facturador.utils.store import JsonStore

    creds = _load_credentials()
    store = JsonStore()
    credential_store = CredentialStore(store)
    stored = await credential_store.load_credentials()
    if stored is None or stored.to_dict() != creds.to_dict():
        await credential_store.save_credentials(creds)
        await credential_store.save_session(None)

    client = InvoicingClient(
        store,
        ArcaClient(creds.certificate, creds.environment, creds.point_of_sale),
        credential_store=credential_store,
        policy=load_policy(),
        retry_interval=get_retry_interval(),
    )
    await client.start()
    return client


def _print_status(state) -> None:
    print(f"Entorno:            {state.environment}")
    print(f"Configurado:        {'si' if state.configured else 'no'}")
    print(f"Conectado:          {'si' if state.connected else 'no'}")
    print(f"Ultima sincronizacion: {state.last_sync or '-'}")
    valid = {True: "vigente", False: "vencido o ausente", None: "desconocido"}[state.certificate_valid]
    print(f"Certificado:        {valid} (hasta {state.certificate_valid_until or '-'})")
    print(f"Pendientes:         {state.pending_count}")
    if state.errors:
        print("Errores recientes:")
        for err in state.errors:
            print(f"  - {err}")


async def _status() -> int:
    client = await _open_client()
    try:
        _print_status(client.status())
    finally:
        await client.close()
    return 0


async def _replay() -> int:
    client = await _open_client()
    try:
        report = await client.replay_pending()
        print(f"Aprobados: {len(report.approved)}")
        print(f"Rechazados: {len(report.rejected)}")
        print(f"Pendientes: {report.remaining}")
        if report.stopped_on is not None:
            print(f"Detenido: {report.stopped_on}")
            return 1
    finally:
        await client.close()
    return 0


def main() -> None:
    """Entry point for the facturador CLI."""
    from facturador.config import get_log_level

    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command = sys.argv[1] if len(sys.argv) > 1 else "status"
    if command == "init":
        _init_config()
        return
    if command not in ("status", "replay"):
        print(f"Comando desconocido: {command}")
        print("Uso: facturador [init|status|replay]")
        sys.exit(2)

    if not _preflight():
        sys.exit(1)

    runner = _status if command == "status" else _replay
    sys.exit(asyncio.run(runner()))


if __name__ == "__main__":
    main()
