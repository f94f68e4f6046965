# WORKFLOW: Core configuration management for the circularity indicators pipeline.
# Used by: All modules throughout the application
# Configuration includes:
# - Source (raw) and target (processed) database connection settings
# - Product catalog location
# - Raw table name templates (one table per year)
# - Mass-balance flow identifiers and collection statistics codes
# - Processing options (step timeout, data-quality thresholds)
# - API and logging settings
#
# Loaded at startup and used by all services for consistent configuration.

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Databases
    source_database_url: str = "sqlite:///./data/raw.db"
    target_database_url: str = "sqlite:///./data/processed.db"

    # Product catalog
    products_config_path: str = "config/products.toml"

    # Raw table templates
    production_table_template: str = "prodcom_ds_056120_{year}"
    trade_table_template: str = "comext_ds_045409_{year}"
    collection_table_template: str = "env_waselee_{year}"
    mass_balance_table: str = "ump_weee_sankey"

    # Mass-balance flows (Urban Mine Platform sankey identifiers)
    observed_scenario_marker: str = "hist"
    composition_flow_id: str = "F3_4"
    recovery_flow_ids: list[str] = ["F4_5", "F4_6"]
    loss_flow_id: str = "F4_99"

    # Waste collection statistics
    collection_operation_codes: list[str] = ["COL"]
    collection_unit_codes: list[str] = ["PC", "PC_AVG3Y"]

    # Harmonization
    eu_aggregate_geo: str = "EU27_2020"

    # Processing
    step_timeout_seconds: float = 300.0
    trade_ratio_threshold: float = 10.0
    retain_intermediate_tables: bool = False

    # API
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Circularity Indicators Pipeline"
    version: str = "0.1.0"
    api_host: str = "0.0.0.0"
    api_port: int = 8001
    allowed_origins: list[str] = ["*"]
    allowed_methods: list[str] = ["GET", "POST"]
    allowed_headers: list[str] = ["*"]

    # Environment
    environment: str = "development"
    debug: bool = False

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
