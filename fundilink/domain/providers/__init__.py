"""Provider domain - accounts, earnings, subscriptions and ratings"""
