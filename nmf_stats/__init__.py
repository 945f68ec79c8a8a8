"""
Statistical core for the NMF subtype dashboard.

Contains:
- distance_lib / clustering_lib: distance metrics, linkage and agglomerative clustering
- cluster_metrics_lib: silhouette, Davies-Bouldin and Calinski-Harabasz scores
- pca_lib: power-iteration PCA and scree variance
- survival_data: survival curve value objects and Kaplan-Meier curve building
- logrank_lib: event reconstruction from curves and the log-rank test
- cox_lib: curve-based Cox PH approximation (univariate, stratified, multivariate)
- stepwise_lib: forward selection and backward elimination
- advanced_stats_lib / heterogeneity_lib / formatting: shared statistics helpers
"""
