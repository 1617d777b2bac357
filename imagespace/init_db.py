from imagespace.config import load_config
from imagespace.models.database import build_engine, init_db

if __name__ == "__main__":
    config = load_config()
    print(f"Creating database tables at {config['DATABASE_URL']}...")
    init_db(build_engine(config["DATABASE_URL"]))
    print("Database tables created successfully!")
