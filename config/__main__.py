"""Command line interface for testing configuration loading"""
from . import settings_conf
from pathlib import Path

SECRET_KEYS = {'jwt_secret'}

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS:
            value = '*' * 8
        print(f"{key}: {value}")

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("""[DEFAULT]
# PostgreSQL connection URL
db_url = postgresql://postgres@localhost:5432/cardtrade
# Secret used to sign session tokens
jwt_secret = change-this-secret
jwt_expiry_days = 7
# External card catalog API
tcgdex_base_url = https://api.tcgdex.net/v2/en
# Comma-separated list of allowed browser origins
cors_origins = http://localhost:5173
""")

if __name__ == "__main__":
    main()
