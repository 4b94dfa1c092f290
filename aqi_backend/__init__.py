"""City air quality index service with a tiered resolution cascade."""
