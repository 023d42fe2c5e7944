"""
Добавить аккаунт в БД и пересобрать конфиг sing-box.

Запуск: python scripts/add_account.py username
    или: python scripts/add_account.py username --limit-gb 30 --telegram-id 123456
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import SERVER_ADDRESS
from db.crud import list_enabled_inbounds
from db.session import SessionLocal
from services.accounts import create_account
from services.exceptions import FleetManagerError
from services.links import build_links

GB = 1024 ** 3


def main():
    parser = argparse.ArgumentParser(description="Добавить аккаунт")
    parser.add_argument("username", help="Метка аккаунта (имя в sing-box)")
    parser.add_argument("--telegram-id", type=int, default=0, help="telegram_id (0 = без Telegram)")
    parser.add_argument("--telegram-username", type=str, help="Ник в Telegram")
    parser.add_argument("--limit-gb", type=float, default=0, help="Лимит трафика в ГБ (0 = безлимит)")
    args = parser.parse_args()

    if args.limit_gb < 0:
        parser.error("--limit-gb не может быть отрицательным")

    db = SessionLocal()
    try:
        account, outcome = create_account(
            db,
            username=args.username,
            telegram_id=args.telegram_id,
            telegram_username=args.telegram_username,
            traffic_limit=int(args.limit_gb * GB),
        )
        print(f"Аккаунт создан: id={account.id} uuid={account.uuid}")
        print(f"  Токен подписки: {account.subscription_token}")
        print(f"  Конфиг: {outcome.status.value}" + (f" ({outcome.error})" if outcome.error else ""))
        for link in build_links(list_enabled_inbounds(db), account, SERVER_ADDRESS):
            print(f"  {link}")
    except FleetManagerError as e:
        print(f"Ошибка: {e}")
        return 1
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
