import numpy as np
import pandas as pd
import pytest
from scipy.cluster.hierarchy import linkage
from scipy.spatial.distance import squareform

from PsychWGCNA.network import Network
from conftest import make_module_expression


def _dissTOM(datExpr, power=6):
    adjacency = Network.adjacency(datExpr, adjacencyType="signed", power=power)
    TOM = Network.TOMsimilarity(adjacency, TOMType="signed")
    return (1 - TOM).round(decimals=8)


def _purity(labels, truth, module):
    values, counts = np.unique(labels[truth == module], return_counts=True)
    best = np.argmax(counts)
    return values[best], counts[best] / np.sum(truth == module)


def test_adjacency_types():
    rng = np.random.default_rng(0)
    x = rng.normal(size=20)
    datExpr = pd.DataFrame({'a': x, 'b': -x, 'c': 2 * x + 1})

    signed = Network.adjacency(datExpr, adjacencyType="signed", power=1)
    unsigned = Network.adjacency(datExpr, adjacencyType="unsigned", power=2)
    hybrid = Network.adjacency(datExpr, adjacencyType="signed hybrid", power=3)

    assert signed[0, 1] == pytest.approx(0)
    assert signed[0, 2] == pytest.approx(1)
    assert unsigned[0, 1] == pytest.approx(1)
    assert hybrid[0, 1] == 0
    assert hybrid[0, 2] == pytest.approx(1)
    with pytest.raises(ValueError):
        Network.adjacency(datExpr, adjacencyType="weighted")


def test_tom_similarity_small_network():
    adjacency = np.array([[1, 0.5, 0.2],
                          [0.5, 1, 0.4],
                          [0.2, 0.4, 1]])

    TOM = Network.TOMsimilarity(adjacency, TOMType="unsigned", TOMDenom="min")

    # (a13 * a32 + a12) / (min(k1, k2) + 1 - a12)
    assert TOM[0, 1] == pytest.approx((0.2 * 0.4 + 0.5) / (0.7 + 1 - 0.5))
    assert np.allclose(np.diag(TOM), 1)
    assert np.allclose(TOM, TOM.T)
    assert adjacency[0, 0] == 1

    TOMmean = Network.TOMsimilarity(adjacency, TOMType="signed", TOMDenom="mean")
    assert TOMmean[0, 1] == pytest.approx((0.2 * 0.4 + 0.5) / (0.8 + 1 - 0.5))


def test_tom_similarity_rejects_bad_adjacency():
    with pytest.raises(ValueError, match="symmetric"):
        Network.TOMsimilarity(np.array([[1, 0.5], [0.1, 1]]))
    with pytest.raises(ValueError, match="between"):
        Network.TOMsimilarity(np.array([[1, 2.0], [2.0, 1]]), TOMType="unsigned")
    with pytest.raises(ValueError):
        Network.TOMsimilarity(np.eye(2), TOMType="NA")


def test_scale_free_fit_of_power_law_connectivity():
    rng = np.random.default_rng(0)
    k = rng.pareto(2, size=2000) + 1

    fit = Network.scaleFreeFitIndex(k, nBreaks=10)

    assert fit.loc[0, 'slope.SFT'] < 0
    assert 0 <= fit.loc[0, 'Rsquared.SFT'] <= 1


def test_pick_soft_threshold(module_expression):
    datExpr, _, _ = module_expression
    powers = [1, 2, 4, 6, 8, 10]

    power, sft = Network.pickSoftThreshold(datExpr, powerVector=powers, networkType="signed",
                                           moreNetworkConcepts=True)

    assert power in powers
    assert sft['Power'].tolist() == powers
    assert list(sft.columns[:7]) == ["Power", "SFT.R.sq", "slope", "truncated R.sq", "mean(k)", "median(k)",
                                     "max(k)"]
    assert 'Heterogeneity' in sft.columns
    assert (np.diff(sft['mean(k)']) < 0).all()

    signedRsq = -np.sign(sft['slope']) * sft['SFT.R.sq']
    accepted = sft['Power'][(signedRsq > 0.85) & (sft['mean(k)'] <= 100)]
    if len(accepted) > 0:
        assert power == accepted.min()
    else:
        assert power == sft['Power'][signedRsq.idxmax()]


def test_pick_soft_threshold_needs_three_genes(module_expression):
    datExpr, _, _ = module_expression
    with pytest.raises(ValueError):
        Network.pickSoftThreshold(datExpr.iloc[:, :2])


def test_pick_soft_threshold_blocks_give_same_connectivity(module_expression):
    datExpr, _, _ = module_expression

    _, whole = Network.pickSoftThreshold(datExpr, powerVector=[2, 6])
    _, blocked = Network.pickSoftThreshold(datExpr, powerVector=[2, 6], blockSize=7)

    assert np.allclose(whole['mean(k)'], blocked['mean(k)'])


def test_cal_block_size():
    assert Network.calBlockSize(1000, maxMemoryAllocation=8 * 3 * 1000 * 10) == 10
    assert Network.calBlockSize(10, maxMemoryAllocation=2 ** 30) == 10
    assert 1 <= Network.calBlockSize(100000) <= 100000


def test_cutree_hybrid_finds_modules():
    datExpr, truth, _ = make_module_expression(module_sizes=(50, 30, 15), n_noise=10)
    dissTOM = _dissTOM(datExpr)
    geneTree = linkage(squareform(dissTOM, checks=False), method="average")

    for pamRespectsDendro in [True, False]:
        labels = Network.cutreeHybrid(dendro=geneTree, distM=dissTOM, deepSplit=2, minClusterSize=15,
                                      pamRespectsDendro=pamRespectsDendro)

        assert labels.shape == (datExpr.shape[1],)
        found = {}
        for module in [1, 2, 3]:
            label, purity = _purity(labels, truth, module)
            assert label != 0
            assert purity > 0.9
            found[module] = label
        assert len(set(found.values())) == 3
        # labels are ordered by size
        assert found[1] == 1


def test_cutree_hybrid_without_pam_stage(module_expression):
    datExpr, truth, _ = module_expression
    dissTOM = _dissTOM(datExpr)
    geneTree = linkage(squareform(dissTOM, checks=False), method="average")

    labels = Network.cutreeHybrid(dendro=geneTree, distM=dissTOM, deepSplit=2, minClusterSize=15, pamStage=False)

    for module in [1, 2, 3]:
        label, purity = _purity(labels, truth, module)
        assert label != 0
        assert purity > 0.9
    sizes = np.bincount(labels[labels > 0])[1:]
    assert len(sizes) == 3
    assert (np.diff(sizes) <= 0).all()


def test_cutree_hybrid_argument_checks(module_expression):
    datExpr, _, _ = module_expression
    dissTOM = _dissTOM(datExpr)
    geneTree = linkage(squareform(dissTOM, checks=False), method="average")

    with pytest.raises(ValueError):
        Network.cutreeHybrid(dendro=geneTree, distM=dissTOM[:10, :10])
    with pytest.raises(ValueError):
        Network.cutreeHybrid(dendro=geneTree, distM=dissTOM, deepSplit=7)
    labels = Network.cutreeHybrid(dendro=geneTree, distM=dissTOM, cutHeight=0.0, minClusterSize=15)
    assert (labels == 0).all()


def test_labels2colors():
    colors = Network.labels2colors([0, 1, 2, 3, 1])

    assert colors.tolist() == ['grey', 'turquoise', 'blue', 'brown', 'turquoise']
    assert Network.labels2colors(np.arange(20))[17] == 'grey60'
    assert Network.labels2colors([0, 1], naColor='white').tolist()[0] == 'white'
    assert Network.labels2colors([0, 1], zeroIsGrey=False).tolist() == ['turquoise', 'blue']


def test_labels2colors_repeats_when_running_out_of_colors():
    nColors = len(Network.colorSequence())
    colors = Network.labels2colors([1, nColors + 1])

    assert colors[1] == colors[0] + ".1"


def test_colors2labels():
    nColors = len(Network.colorSequence())
    labels = np.array([0, 1, 17, 3, nColors + 2, 0])
    colors = Network.labels2colors(labels)

    assert colors[2] == 'grey60'
    assert colors[4] == 'blue.1'
    assert Network.colors2labels(colors).tolist() == labels.tolist()
    assert Network.colors2labels(['white', 'turquoise'], naColor='white').tolist() == [0, 1]
    with pytest.raises(ValueError):
        Network.colors2labels(['notacolor'])
    with pytest.raises(ValueError):
        Network.colors2labels(['blue.x'])


def test_module_eigengenes(module_expression):
    datExpr, truth, latent = module_expression
    colors = Network.labels2colors(truth)

    MEList = Network.moduleEigengenes(datExpr, colors)
    MEs = MEList['eigengenes']

    assert MEs.columns.tolist() == ['MEblue', 'MEbrown', 'MEgrey', 'MEturquoise']
    assert MEs.index.equals(datExpr.index)
    assert np.corrcoef(MEs['MEturquoise'], latent[0])[0, 1] > 0.95
    assert np.corrcoef(MEs['MEblue'], latent[1])[0, 1] > 0.95
    # aligned with the average expression of the module
    average = datExpr.loc[:, colors == 'brown'].mean(axis=1)
    assert np.corrcoef(MEs['MEbrown'], average)[0, 1] > 0
    varExplained = MEList['varExplained'].loc[0]
    assert (varExplained > 0).all() and (varExplained <= 1).all()
    assert varExplained['MEturquoise'] > varExplained['MEgrey']
    assert MEList['allOK']

    noGrey = Network.moduleEigengenes(datExpr, colors, excludeGrey=True)['eigengenes']
    assert 'MEgrey' not in noGrey.columns

    with pytest.raises(ValueError):
        Network.moduleEigengenes(datExpr, colors[:10])


def test_module_eigengenes_falls_back_to_hub_genes(module_expression, monkeypatch):
    datExpr, truth, latent = module_expression
    colors = Network.labels2colors(truth)

    def failing_svd(*args, **kwargs):
        raise np.linalg.LinAlgError("SVD did not converge")

    monkeypatch.setattr(np.linalg, "svd", failing_svd)
    MEList = Network.moduleEigengenes(datExpr, colors, excludeGrey=True)

    assert not MEList['allPC']
    assert MEList['isHub'].all()
    assert np.corrcoef(MEList['eigengenes']['MEturquoise'], latent[0])[0, 1] > 0.9


def test_order_mes_puts_grey_last():
    rng = np.random.default_rng(0)
    z = rng.normal(size=30)
    MEs = pd.DataFrame({'MEgrey': rng.normal(size=30),
                        'MEblue': z + rng.normal(scale=0.1, size=30),
                        'MEred': rng.normal(size=30),
                        'MEturquoise': z})

    ordered = Network.orderMEs(MEs)

    assert ordered.columns[-1] == 'MEgrey'
    assert sorted(ordered.columns) == sorted(MEs.columns)
    position = ordered.columns.tolist()
    assert abs(position.index('MEblue') - position.index('MEturquoise')) == 1


def test_merge_close_modules():
    datExpr, truth, latent = make_module_expression(module_sizes=(30, 30, 30), n_noise=10, seed=3)
    # first two modules follow the same latent factor
    rng = np.random.default_rng(4)
    datExpr.loc[:, truth == 2] = 0.9 * latent[0][:, np.newaxis] + rng.normal(scale=0.35, size=(40, 30))
    colors = Network.labels2colors(truth)

    merge = Network.mergeCloseModules(datExpr, colors, cutHeight=0.25)
    merged = merge['colors']

    assert len(np.unique(merged[truth == 1])) == 1
    assert merged[truth == 1][0] == merged[truth == 2][0]
    assert merged[truth == 3][0] != merged[truth == 1][0]
    assert (merged[truth == 0] == 'grey').all()
    assert merge['oldMEs'].shape[1] == 3
    assert merge['newMEs'].shape[1] == 2


def test_merge_close_modules_with_one_module(module_expression):
    datExpr, truth, _ = module_expression
    colors = np.where(truth == 1, 'turquoise', 'grey')

    merge = Network.mergeCloseModules(datExpr, colors, cutHeight=0.25)

    assert (merge['colors'] == colors).all()
    with pytest.raises(ValueError):
        Network.mergeCloseModules(datExpr, colors, cutHeight=2)


def test_projective_kmeans_blocks():
    datExpr, _, _ = make_module_expression(module_sizes=(40, 40, 40), n_noise=30)

    assert (Network.projectiveKMeans(datExpr, preferredSize=5000) == 0).all()

    blocks = Network.projectiveKMeans(datExpr, preferredSize=60, seed=1)
    sizes = np.bincount(blocks)
    assert blocks.shape == (datExpr.shape[1],)
    assert (blocks >= 0).all()
    assert sizes.max() <= 60
    assert (np.diff(sizes) <= 0).all()


def test_blockwise_modules(module_expression):
    datExpr, truth, _ = module_expression

    net = Network.blockwiseModules(datExpr, power=6, minModuleSize=15, mergeCutHeight=0.25)

    colors = net['colors']
    assert len(colors) == datExpr.shape[1]
    assert (net['blocks'] == 0).all()
    assert len(net['dendrograms']) == 1
    found = set()
    for module in [1, 2, 3]:
        values, counts = np.unique(colors[truth == module], return_counts=True)
        assert values[np.argmax(counts)] != 'grey'
        assert counts.max() / counts.sum() > 0.85
        found.add(values[np.argmax(counts)])
    assert len(found) == 3
    assert sorted(net['MEs'].columns) == sorted("ME" + c for c in found)


def test_blockwise_modules_over_several_blocks(module_expression, monkeypatch):
    datExpr, truth, _ = module_expression
    blocks = np.where(truth == 1, 0, np.where(truth == 2, 0, 1))
    blocks[-1] = 2
    monkeypatch.setattr(Network, "projectiveKMeans", staticmethod(lambda *args, **kwargs: blocks))

    net = Network.blockwiseModules(datExpr, power=6, minModuleSize=15, mergeCutHeight=0.25)

    colors = net['colors']
    assert sorted(net['dendrograms'].keys()) == [0, 1]
    assert sorted(net['blockGenes'].keys()) == [0, 1, 2]
    assert net['blockGenes'][2].tolist() == [datExpr.columns[-1]]
    # a single gene block is left unassigned
    assert colors[-1] == 'grey'
    first = [np.unique(colors[truth == module], return_counts=True) for module in [1, 2]]
    dominant = [values[np.argmax(counts)] for values, counts in first]
    assert 'grey' not in dominant
    assert dominant[0] != dominant[1]


def test_blockwise_modules_dissolves_weak_modules(module_expression):
    datExpr, truth, _ = module_expression

    net = Network.blockwiseModules(datExpr, power=6, minModuleSize=15, minCoreKME=0.99, minCoreKMESize=10)

    assert (net['colors'] == 'grey').all()


def test_signed_kme(module_expression):
    datExpr, truth, _ = module_expression
    MEs = Network.moduleEigengenes(datExpr, Network.labels2colors(truth), excludeGrey=True)['eigengenes']

    kME = Network.signedKME(datExpr, MEs)

    assert kME.shape == (datExpr.shape[1], 3)
    assert kME.columns.tolist() == ['kME' + name[2:] for name in MEs.columns]
    gene = datExpr.columns[0]
    assert kME.loc[gene, 'kMEturquoise'] == pytest.approx(np.corrcoef(datExpr[gene], MEs['MEturquoise'])[0, 1])


def test_intramodular_connectivity():
    adjacency = pd.DataFrame([[1, 0.5, 0.1],
                              [0.5, 1, 0.2],
                              [0.1, 0.2, 1]], index=['a', 'b', 'c'], columns=['a', 'b', 'c'])

    connectivity = Network.intramodularConnectivity(adjacency, ['blue', 'blue', 'red'])

    assert connectivity.loc['a', 'kTotal'] == pytest.approx(0.6)
    assert connectivity.loc['a', 'kWithin'] == pytest.approx(0.5)
    assert connectivity.loc['a', 'kOut'] == pytest.approx(0.1)
    assert connectivity.loc['c', 'kWithin'] == 0
    assert connectivity.loc['c', 'kDiff'] == pytest.approx(-0.3)


def test_cor_pvalue():
    cor = pd.DataFrame([[0.0, 0.9], [-0.9, 0.3]])

    pvalue = Network.corPvalue(cor, 30)

    assert pvalue.iloc[0, 0] == pytest.approx(1)
    assert pvalue.iloc[0, 1] < 1e-6
    assert pvalue.iloc[0, 1] == pytest.approx(pvalue.iloc[1, 0])
    assert ((pvalue >= 0) & (pvalue <= 1)).all().all()
