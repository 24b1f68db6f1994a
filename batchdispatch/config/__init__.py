"""Configuration management package.

Submodules:
- config_loader: YAML configuration loading (ConfigLoader, PROJECT_ROOT, CONFIG_DIR)
- constants: Dispatch defaults (hard cap, budget ratios, retry bounds)
- service: Configuration service singleton (ConfigService, get_config_service)
- settings: DispatchSettings value object

Note: Use direct imports from submodules:
    from batchdispatch.config.service import get_config_service
    from batchdispatch.config.settings import DispatchSettings
"""
