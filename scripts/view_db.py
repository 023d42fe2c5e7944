"""
Просмотр данных из базы данных.
Использование:
    python scripts/view_db.py              # Аккаунты + статистика
    python scripts/view_db.py --inbounds   # Инбаунды
    python scripts/view_db.py --stats      # Только статистика
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.crud import account_stats, list_accounts, list_inbounds
from db.session import SessionLocal


def format_bytes(value: int) -> str:
    size = float(value or 0)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def print_accounts(db):
    """Вывести аккаунты."""
    accounts = list_accounts(db)
    if not accounts:
        print("Аккаунты не найдены.")
        return

    print("\n" + "=" * 110)
    print(f"{'ID':<5} {'Username':<20} {'Status':<10} {'UUID':<38} {'Used':<12} {'Limit':<12} {'Telegram':<12}")
    print("=" * 110)

    for account in accounts:
        limit_str = format_bytes(account.traffic_limit) if account.traffic_limit else "∞"
        print(f"{account.id:<5} {account.username:<20} {account.status:<10} {account.uuid:<38} "
              f"{format_bytes(account.traffic_used):<12} {limit_str:<12} {account.telegram_id or '-':<12}")

    print("=" * 110)
    print(f"\nВсего: {len(accounts)}")


def print_inbounds(db):
    """Вывести инбаунды."""
    inbounds = list_inbounds(db)
    if not inbounds:
        print("Инбаунды не найдены.")
        return

    print("\n" + "=" * 100)
    print(f"{'ID':<5} {'Tag':<18} {'Protocol':<10} {'Port':<7} {'TLS':<12} {'Transport':<12} {'Users':<8} {'Enabled':<8}")
    print("=" * 100)

    for inbound in inbounds:
        enabled_str = "✓" if inbound.enabled else "✗"
        builtin = "*" if inbound.is_builtin else ""
        print(f"{inbound.id:<5} {inbound.tag + builtin:<18} {inbound.protocol:<10} {inbound.listen_port:<7} "
              f"{inbound.tls_type or '-':<12} {inbound.transport or 'tcp':<12} {inbound.user_type or '-':<8} {enabled_str:<8}")

    print("=" * 100)
    print("* - встроенный")


def print_stats(db):
    """Вывести статистику."""
    stats = account_stats(db)
    print("\n" + "=" * 60)
    print("СТАТИСТИКА")
    print("=" * 60)
    print(f"Всего аккаунтов:            {stats['total_users']}")
    print(f"Активных:                   {stats['active_users']}")
    print(f"Заблокированных:            {stats['banned_users']}")
    print(f"Истёк лимит:                {stats['expired_users']}")
    print(f"Трафик всего:               {format_bytes(stats['total_traffic_used'])}")
    print("=" * 60)


def main():
    parser = argparse.ArgumentParser(description="Просмотр данных из БД")
    parser.add_argument("--inbounds", action="store_true", help="Показать инбаунды")
    parser.add_argument("--stats", action="store_true", help="Показать статистику")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        if args.inbounds:
            print_inbounds(db)
        elif args.stats:
            print_stats(db)
        else:
            print_accounts(db)
            print("\n")
            print_stats(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
