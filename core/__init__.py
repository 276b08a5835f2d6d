"""core/ -- Kernel shared by every layer: configuration. Imports nothing from auth/."""
