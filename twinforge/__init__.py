# -*- coding: utf-8 -*-
"""TwinForge backend: streaming generation pipelines (meal plans, recipes, shopping lists)."""
