# WORKFLOW: ETL (Extract, Transform, Load) package for circularity data harmonization.
# Used by: Pipeline orchestrator, tests
# Modules include:
# 1. coercion.py - Tag raw text values as number, unparseable or missing
# 2. unit_converter.py - Convert PRODCOM unit codes to tonnes
# 3. country_codes.py - Harmonize PRODCOM and COMEXT country codes
# 4. product_mapping.py - PRODCOM epochs and HS code expansion
# 5. production_trade.py - Production/trade harmonization, merge and fallback
# 6. material_flows.py - Material composition and recovery rates from mass-balance flows
# 7. collection_rates.py - Product collection rates
# 8. indicators.py - Circularity indicators, aggregates, unit values
# 9. strategy_indicators.py - Refurbishment and recycling strategy savings
# 10. validators.py - Raw input validation and data-quality flags
#
# ETL flow: Raw tables -> Harmonize -> Merge/Fallback -> Indicators -> Year tables
# Functions here are pure DataFrame transformations; reading and writing tables is done by the pipeline.

"""
ETL package for circularity indicator harmonization and processing.
"""
