#!/usr/bin/env python3
"""
Feydar Database Stats Tool
Quick overview, enrichment coverage and CSV export for the deployments store
"""

import csv
import os
import sqlite3
import sys
from datetime import datetime
from typing import Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

from feydar.database import DeploymentDatabase
from feydar.models import DeploymentRecord

# ANSI color codes (disable on Windows if issues)
ENABLE_COLORS = os.name != 'nt' or os.environ.get('ANSICON')

# Nullable columns filled by enrichment; coverage shows what integrity repair still has to fix
ENRICHED_COLUMNS = (
    'deployer_alias_primary', 'deployer_alias_secondary', 'creator_fee_bps', 'staker_fee_bps',
    'pool_identifier', 'current_admin_address', 'current_image_uri', 'is_verified', 'total_supply',
)


class Colors:
    if ENABLE_COLORS:
        GREEN = '\033[92m'
        YELLOW = '\033[93m'
        RED = '\033[91m'
        CYAN = '\033[96m'
        BOLD = '\033[1m'
        ENDC = '\033[0m'
    else:
        GREEN = YELLOW = RED = CYAN = BOLD = ENDC = ''


def print_section(title: str):
    """Print section header"""
    print(f"\n{Colors.CYAN}{Colors.BOLD}{title}{Colors.ENDC}")
    print("-" * 40)


def open_database() -> Optional[DeploymentDatabase]:
    load_dotenv(find_dotenv(usecwd=True))
    path = os.getenv('DATABASE_PATH', 'deployments.db')
    if not os.path.exists(path):
        print(f"{Colors.RED}❌ Database not found at {path}!{Colors.ENDC}")
        return None
    return DeploymentDatabase(path)


def coverage(db: DeploymentDatabase) -> Dict[str, int]:
    """Non-null count per enriched column"""
    selects = ', '.join(f"COUNT({column}) AS {column}" for column in ENRICHED_COLUMNS)
    conn = sqlite3.connect(db.db_path)
    conn.row_factory = sqlite3.Row
    try:
        row = conn.execute(f"SELECT {selects} FROM deployments").fetchone()
    finally:
        conn.close()
    return {column: row[column] for column in ENRICHED_COLUMNS}


def top_deployers(db: DeploymentDatabase, limit: int = 10) -> List[sqlite3.Row]:
    conn = sqlite3.connect(db.db_path)
    conn.row_factory = sqlite3.Row
    try:
        return conn.execute('''
            SELECT deployer_address,
                   MAX(deployer_alias_primary) AS basename,
                   MAX(deployer_alias_secondary) AS ens,
                   COUNT(*) AS tokens
            FROM deployments
            GROUP BY deployer_address
            ORDER BY tokens DESC
            LIMIT ?
        ''', (limit,)).fetchall()
    finally:
        conn.close()


def format_record(record: DeploymentRecord) -> str:
    split = ''
    if record.creator_fee_bps is not None:
        split = f" | fees {record.creator_fee_bps / 100:.0f}/{(record.staker_fee_bps or 0) / 100:.0f}"
    return (f"   {record.created_at:%Y-%m-%d %H:%M} | {record.symbol:<10} | {record.name[:24]:<24} | "
            f"{record.deployer_display}{split}")


def quick_stats():
    """Display quick overview stats"""
    db = open_database()
    if db is None:
        return

    print(f"\n{Colors.BOLD}{'=' * 60}{Colors.ENDC}")
    print(f"{Colors.BOLD}FEYDAR - QUICK STATS{Colors.ENDC}".center(60))
    print(f"{Colors.BOLD}{'=' * 60}{Colors.ENDC}")

    total = db.count()
    print_section("📊 DEPLOYMENTS")
    print(f"Total tokens: {Colors.GREEN}{total}{Colors.ENDC}")
    latest = db.get_latest_block_number()
    print(f"Latest block stored: {latest if latest is not None else '-'}")

    recent, _ = db.find_many(page_size=10)
    if recent:
        print_section("🆕 LATEST DEPLOYMENTS")
        for record in recent:
            print(format_record(record))


def detailed_stats():
    """Enrichment coverage and top deployers"""
    db = open_database()
    if db is None:
        return

    total = db.count()
    print_section("🧩 ENRICHMENT COVERAGE")
    if not total:
        print(f"{Colors.YELLOW}⚠️  No deployments stored yet{Colors.ENDC}")
        return
    for column, filled in coverage(db).items():
        percent = filled / total * 100
        color = Colors.GREEN if percent >= 90 else Colors.YELLOW if percent >= 50 else Colors.RED
        print(f"{column:<26} {color}{filled:>6}/{total} ({percent:5.1f}%){Colors.ENDC}")

    print_section("👑 TOP DEPLOYERS")
    for row in top_deployers(db):
        name = f"{row['basename']}.base.eth" if row['basename'] else row['ens'] or row['deployer_address']
        print(f"   {row['tokens']:>4} tokens  {name}")


def export_data():
    """Export deployments to CSV"""
    db = open_database()
    if db is None:
        return

    export_dir = f"feydar_export_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    os.makedirs(export_dir, exist_ok=True)
    filename = os.path.join(export_dir, "deployments.csv")

    rows = 0
    page = 1
    with open(filename, 'w', newline='', encoding='utf-8') as f:
        writer = None
        while True:
            records, total = db.find_many(page=page, page_size=100)
            if not records:
                break
            for record in records:
                values = record.values()
                if writer is None:
                    writer = csv.DictWriter(f, fieldnames=list(values))
                    writer.writeheader()
                writer.writerow(values)
                rows += 1
            if rows >= total:
                break
            page += 1

    if rows:
        print(f"✅ {filename} - {rows} rows")
    else:
        print(f"{Colors.YELLOW}⚠️  No data to export{Colors.ENDC}")
        os.remove(filename)
        os.rmdir(export_dir)


def main():
    """Main menu"""
    while True:
        print(f"\n{Colors.BOLD}📊 FEYDAR DATABASE STATS{Colors.ENDC}")
        print("=" * 35)
        print("1. Quick Stats")
        print("2. Enrichment Coverage")
        print("3. Export to CSV")
        print("0. Exit")

        choice = input(f"\n{Colors.CYAN}Select option: {Colors.ENDC}")

        if choice == "1":
            quick_stats()
        elif choice == "2":
            detailed_stats()
        elif choice == "3":
            export_data()
        elif choice == "0":
            print(f"{Colors.GREEN}Goodbye!{Colors.ENDC}")
            break
        else:
            print(f"{Colors.RED}Invalid option!{Colors.ENDC}")


if __name__ == "__main__":
    # If run with argument, do quick stats and exit
    if len(sys.argv) > 1 and sys.argv[1] == "--quick":
        quick_stats()
    elif len(sys.argv) > 1 and sys.argv[1] == "--export":
        export_data()
    else:
        main()
